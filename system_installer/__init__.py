"""System installer (state-driven provisioning orchestrator).

Core design goals:
- Ordered phases of independent unit programs
- Each unit runs once; completion is durable
- Resumable across reboots
- Config files kept in a git repository and symlinked into place
- Centralized logging
"""

__all__ = []
