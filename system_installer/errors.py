from __future__ import annotations


class InstallerError(RuntimeError):
    """Base class for every error that should end a run with exit status 1."""
