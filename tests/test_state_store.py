"""
Tests for the durable installer state.
"""

import json

import pytest

from system_installer.state_store import StateError, StateStore, UnitRef, load_state


@pytest.fixture
def store(tmp_path):
    return StateStore.in_dir(tmp_path / "state")


class TestFirstRun:
    def test_absent_state_reads_as_empty(self, store):
        assert store.get_resume_marker() is None
        assert store.get_current_phase() is None
        assert store.completed_units() == []
        assert not store.is_completed("00-core", "01-base.sh")

    def test_reading_does_not_create_files(self, store):
        assert not store.path.exists()


class TestCompletedSet:
    def test_mark_completed_is_durable(self, store):
        store.mark_completed("00-core", "01-base.sh", digest="abc")

        reopened = StateStore(store.path)
        assert reopened.is_completed("00-core", "01-base.sh")
        assert reopened.completed_digest("00-core", "01-base.sh") == "abc"
        assert not reopened.is_completed("10-desktop", "01-base.sh")

    def test_mark_completed_is_idempotent(self, store):
        store.mark_completed("00-core", "01-base.sh")
        store.mark_completed("00-core", "01-base.sh")
        assert StateStore(store.path).completed_units() == ["00-core/01-base.sh"]

    def test_reset_one_phase(self, store):
        store.mark_completed("00-core", "a.sh")
        store.mark_completed("10-desktop", "b.sh")

        removed = store.reset("00-core")

        assert removed == ["00-core/a.sh"]
        assert StateStore(store.path).completed_units() == ["10-desktop/b.sh"]


class TestMarkers:
    def test_resume_marker_round_trip(self, store):
        store.set_resume_marker("10-desktop", "00-kde.sh")
        assert StateStore(store.path).get_resume_marker() == UnitRef("10-desktop", "00-kde.sh")

        store.clear_resume_marker()
        assert StateStore(store.path).get_resume_marker() is None

    def test_only_one_resume_marker(self, store):
        store.set_resume_marker("00-core", "a.sh")
        store.set_resume_marker("10-desktop", "b.sh")
        assert StateStore(store.path).get_resume_marker() == UnitRef("10-desktop", "b.sh")

    def test_current_phase_round_trip(self, store):
        store.set_current_phase("00-core")
        assert StateStore(store.path).get_current_phase() == "00-core"
        store.clear_current_phase()
        assert StateStore(store.path).get_current_phase() is None


class TestDurability:
    def test_write_leaves_no_temporary_files(self, store):
        store.mark_completed("00-core", "a.sh")
        store.set_resume_marker("00-core", "b.sh")
        assert [p.name for p in store.path.parent.iterdir()] == ["state.json"]

    def test_file_is_a_typed_record(self, store):
        store.mark_completed("00-core", "a.sh")
        store.set_current_phase("00-core")
        data = json.loads(store.path.read_text())
        assert data["version"] == 1
        assert data["current_phase"] == "00-core"
        assert data["resume"] is None
        assert "00-core/a.sh" in data["completed"]

    def test_corrupt_state_is_fatal(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StateError):
            load_state(path)

    def test_wrong_shape_is_fatal(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"completed": ["a"]}), encoding="utf-8")
        with pytest.raises(StateError):
            StateStore(path)

    def test_yaml_state_file(self, tmp_path):
        store = StateStore(tmp_path / "state.yaml")
        store.mark_completed("00-core", "a.sh")
        assert StateStore(tmp_path / "state.yaml").is_completed("00-core", "a.sh")


class TestDryRun:
    def test_dry_run_never_writes(self, tmp_path):
        store = StateStore.in_dir(tmp_path / "state", dry_run=True)
        store.mark_completed("00-core", "a.sh")
        store.set_resume_marker("00-core", "b.sh")
        store.set_current_phase("00-core")

        assert not (tmp_path / "state").exists()
        assert not store.is_completed("00-core", "a.sh")


@pytest.mark.parametrize("record", ["done", ["a"], 3])
def test_malformed_completed_record_is_a_state_error(tmp_path, record):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"completed": {"00-core/a.sh": record}}), encoding="utf-8")
    with pytest.raises(StateError):
        load_state(path)
