"""
Tests for installer config loading and log setup.
"""

import logging

import pytest
import yaml

from system_installer.config import load_config_map, load_installer_config
from system_installer.logging_utils import SUCCESS, configure_logging, console_threshold


class TestInstallerConfig:
    def test_missing_optional_file_gives_defaults(self, tmp_path):
        cfg = load_installer_config(str(tmp_path / "absent.yaml"))
        assert cfg.phase_match == "anchored"
        assert cfg.require_root
        assert cfg.reboot_marker_text == "# REBOOT_REQUIRED"

    def test_missing_required_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_installer_config(str(tmp_path / "absent.yaml"), required=True)

    def test_values_and_overrides(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({"catalog_dir": "/srv/catalog", "state_dir": "/srv/state"}), encoding="utf-8")

        cfg = load_installer_config(str(path)).with_overrides(catalog_dir="/elsewhere", log_dir=None)

        assert cfg.catalog_dir == "/elsewhere"
        assert cfg.state_dir == "/srv/state"
        assert cfg.reboot_marker_file == "/srv/state/reboot_required"

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_installer_config(str(path))


def test_config_map_accepts_single_path(tmp_path):
    path = tmp_path / "map.yaml"
    path.write_text(yaml.safe_dump({"git": "~/.gitconfig", "kde": ["~/.config/kwinrc"]}), encoding="utf-8")
    assert load_config_map(str(path)) == {"git": ["~/.gitconfig"], "kde": ["~/.config/kwinrc"]}


class TestLogging:
    def test_console_threshold(self):
        assert console_threshold("normal", "INFO") == logging.INFO
        assert console_threshold("minimal", "DEBUG") == SUCCESS
        assert console_threshold("full", "WARNING") == logging.WARNING
        with pytest.raises(ValueError):
            console_threshold("loud", "INFO")

    def test_run_log_and_latest_link(self, tmp_path):
        path = configure_logging(str(tmp_path / "logs"), also_console=False)
        logging.getLogger("system_installer.test").debug("hello file")

        latest = tmp_path / "logs" / "latest.log"
        assert latest.is_symlink()
        assert latest.resolve() == (tmp_path / "logs" / path.rsplit("/", 1)[-1]).resolve()
        assert "hello file" in latest.read_text()

    def test_reconfiguring_replaces_handlers(self, tmp_path):
        configure_logging(str(tmp_path / "a"), also_console=False)
        configure_logging(str(tmp_path / "b"), also_console=False)
        logging.getLogger("system_installer.test").info("only b")

        assert "only b" not in (tmp_path / "a" / "latest.log").read_text()
        assert "only b" in (tmp_path / "b" / "latest.log").read_text()
