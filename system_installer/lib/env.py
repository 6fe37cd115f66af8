from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    config_default: str = "/etc/system-installer/config.yaml"
    state_dir: str = "/var/cache/system-installer"
    log_dir: str = "/var/log/system-installer"
    repo_root: str = "/repo/personal/core-configs"
    system_reboot_flag: str = "/var/run/reboot-required"


PATHS = Paths()

# Environment handed to unit programs.
ENV_PREFIX = "SYSTEM_INSTALLER_"
