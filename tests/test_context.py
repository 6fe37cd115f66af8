"""
Tests for the run context handed to unit programs.
"""

from system_installer.context import UnitContext


def test_environment_names(unit_context, identity, repo):
    env = unit_context.for_unit("00-core", "a.sh").to_env()

    assert env["SYSTEM_INSTALLER_USER_NAME"] == "tester"
    assert env["SYSTEM_INSTALLER_USER_HOME"] == str(identity.home)
    assert env["SYSTEM_INSTALLER_REPO"] == str(repo)
    assert env["SYSTEM_INSTALLER_DRY_RUN"] == "false"
    assert env["SYSTEM_INSTALLER_PHASE"] == "00-core"
    assert env["SYSTEM_INSTALLER_UNIT"] == "a.sh"
    assert "system_installer.sync_cli" in env["SYSTEM_INSTALLER_SYNC"]
    assert "SYSTEM_INSTALLER_LOG" not in env
    assert "SYSTEM_INSTALLER_CONFIG_MAP" not in env


def test_optional_values(tmp_path, identity):
    ctx = UnitContext.create(
        repo_root=tmp_path / "repo",
        state_dir=tmp_path / "state",
        reboot_marker=tmp_path / "state" / "reboot_required",
        log_path=str(tmp_path / "install.log"),
        config_map=str(tmp_path / "map.yaml"),
        dry_run=True,
        identity=identity,
    )
    env = ctx.to_env()

    assert env["SYSTEM_INSTALLER_DRY_RUN"] == "true"
    assert env["SYSTEM_INSTALLER_LOG"] == str(tmp_path / "install.log")
    assert env["SYSTEM_INSTALLER_CONFIG_MAP"] == str(tmp_path / "map.yaml")


def test_for_unit_leaves_original_untouched(unit_context):
    unit_context.for_unit("00-core", "a.sh")
    assert unit_context.phase == ""
    assert unit_context.unit == ""


def test_interactive_flag_is_exported(unit_context, tmp_path, identity):
    assert unit_context.to_env()["SYSTEM_INSTALLER_INTERACTIVE"] == "false"
    ctx = UnitContext.create(
        repo_root=tmp_path, state_dir=tmp_path, reboot_marker=tmp_path / "m", interactive=True, identity=identity
    )
    assert ctx.to_env()["SYSTEM_INSTALLER_INTERACTIVE"] == "true"
