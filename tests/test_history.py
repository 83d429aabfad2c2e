"""Tests for the switch history logs, the last-namespace map and the session store."""

from __future__ import annotations

import os
import stat
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest
from filelock import FileLock

from kubepick.config import Settings
from kubepick.errors import ArtifactIOError, LockTimeout, StoreCorrupted
from kubepick.store import HistoryLog, LastNamespaceMap, SessionStore
from kubepick.store import history as history_module
from kubepick.store.fileio import lock_path_for

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


@pytest.fixture
def log(tmp_path: Path) -> HistoryLog:
    return HistoryLog(tmp_path / "history" / "context.yaml", "context", limit=50, lock_timeout=1.0)


def _values(history: HistoryLog) -> list[str]:
    """Recorded values, oldest first."""
    return [event.value for event in history.load().events]


class TestHistoryLog:
    def test_record_and_list_newest_first(self, log: HistoryLog) -> None:
        for value in ("a", "b", "c"):
            log.record(value)
        assert [e.value for e in log.list()] == ["c", "b", "a"]
        assert [e.value for e in log.list(limit=2)] == ["c", "b"]
        assert all(e.kind == "context" for e in log.list())

    def test_previous_after_two_switches(self, log: HistoryLog) -> None:
        log.record("A")
        log.record("B")
        assert log.previous() == "A"
        assert log.previous() == "A"

    def test_previous_skips_repeats_of_latest(self, log: HistoryLog) -> None:
        for value in ("A", "B", "B", "B"):
            log.record(value)
        assert log.previous() == "A"

    def test_previous_without_distinct_value(self, log: HistoryLog) -> None:
        assert log.previous() is None
        log.record("A")
        log.record("A")
        assert log.previous() is None

    def test_every_event_is_kept(self, log: HistoryLog) -> None:
        for value in ("A", "B", "A", "B"):
            log.record(value)
        assert _values(log) == ["A", "B", "A", "B"]

    def test_cap_drops_oldest(self, tmp_path: Path) -> None:
        capped = HistoryLog(tmp_path / "h.yaml", "namespace", limit=3, lock_timeout=1.0)
        for value in ("a", "b", "c", "d", "e"):
            capped.record(value)
        assert _values(capped) == ["c", "d", "e"]

    def test_clear(self, log: HistoryLog) -> None:
        log.record("A")
        log.clear()
        assert log.list() == []
        assert log.latest() is None

    def test_file_is_owner_only(self, log: HistoryLog) -> None:
        log.record("A")
        assert stat.S_IMODE(log.path.stat().st_mode) == 0o600
        assert stat.S_IMODE(lock_path_for(log.path).stat().st_mode) == 0o600

    def test_invalid_yaml_is_reported(self, log: HistoryLog) -> None:
        log.path.parent.mkdir(parents=True)
        log.path.write_text("events: [unclosed")
        with pytest.raises(StoreCorrupted, match="invalid YAML"):
            log.record("A")

    def test_wrong_shape_is_reported(self, log: HistoryLog) -> None:
        log.path.parent.mkdir(parents=True)
        log.path.write_text("events: not-a-list\n")
        with pytest.raises(StoreCorrupted) as exc_info:
            log.previous()
        assert "history --clear" in exc_info.value.hint

    def test_lock_timeout(self, tmp_path: Path) -> None:
        history = HistoryLog(tmp_path / "h.yaml", "context", limit=50, lock_timeout=0.1)
        holder = FileLock(str(lock_path_for(history.path)))
        with holder:
            with pytest.raises(LockTimeout):
                history.record("A")
        history.record("A")
        assert _values(history) == ["A"]

    def test_concurrent_writers_keep_every_event(self, tmp_path: Path) -> None:
        path = tmp_path / "shared.yaml"
        writers, per_writer = 4, 15
        script = textwrap.dedent(
            """
            import sys
            from pathlib import Path
            from kubepick.store.history import HistoryLog

            history = HistoryLog(Path(sys.argv[1]), "context", limit=1000, lock_timeout=30.0)
            for index in range(int(sys.argv[3])):
                history.record(f"{sys.argv[2]}-{index}")
            """
        )
        env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(SRC_DIR), os.environ.get("PYTHONPATH")]))}
        processes = [
            subprocess.Popen(
                [sys.executable, "-c", script, str(path), f"w{n}", str(per_writer)],
                env=env,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
            for n in range(writers)
        ]
        for process in processes:
            _, stderr = process.communicate(timeout=120)
            assert process.returncode == 0, stderr.decode()

        values = _values(HistoryLog(path, "context", limit=1000, lock_timeout=1.0))
        assert len(values) == writers * per_writer
        for n in range(writers):
            mine = [v for v in values if v.startswith(f"w{n}-")]
            assert mine == [f"w{n}-{i}" for i in range(per_writer)]


class TestLastNamespaceMap:
    def test_set_and_get(self, tmp_path: Path) -> None:
        last = LastNamespaceMap(tmp_path / "last.yaml", lock_timeout=1.0)
        assert last.get("ctx") is None
        last.set("ctx", "team-a")
        last.set("other", "default")
        last.set("ctx", "team-b")
        assert last.get("ctx") == "team-b"
        assert last.get("other") == "default"

    def test_clear(self, tmp_path: Path) -> None:
        last = LastNamespaceMap(tmp_path / "last.yaml", lock_timeout=1.0)
        last.set("ctx", "team-a")
        last.clear()
        assert last.get("ctx") is None


class TestSessionStore:
    def test_record_switch_with_namespace(self, settings: Settings) -> None:
        store = SessionStore(settings)
        store.record_switch("staging", "team-a")
        assert store.contexts.latest() == "staging"
        assert store.namespaces.latest() == "team-a"
        assert store.last_namespace.get("staging") == "team-a"

    def test_data_dir_and_children_are_owner_only(self, settings: Settings) -> None:
        SessionStore(settings).record_switch("staging", "team-a")
        for directory in (settings.data_dir, settings.history_dir):
            assert stat.S_IMODE(directory.stat().st_mode) == 0o700

    def test_existing_parent_keeps_its_mode(self, settings: Settings) -> None:
        settings.data_dir.parent.chmod(0o755)
        SessionStore(settings).record_switch("staging")
        assert stat.S_IMODE(settings.data_dir.parent.stat().st_mode) == 0o755
        assert stat.S_IMODE(settings.data_dir.stat().st_mode) == 0o700

    def test_record_switch_without_namespace(self, settings: Settings) -> None:
        store = SessionStore(settings)
        store.record_switch("staging")
        assert store.contexts.latest() == "staging"
        assert not store.namespaces.path.exists()
        assert not store.last_namespace.path.exists()

    def test_failed_write_rolls_back(self, settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
        store = SessionStore(settings)
        store.contexts.record("before")
        original = history_module._write_model
        calls: list[Path] = []

        def flaky(path: Path, document) -> None:
            calls.append(path)
            if len(calls) == 2:
                raise ArtifactIOError(path, "disk full")
            original(path, document)

        monkeypatch.setattr(history_module, "_write_model", flaky)
        with pytest.raises(ArtifactIOError, match="disk full"):
            store.record_switch("after", "team-a")

        assert _values(store.contexts) == ["before"]
        assert not store.namespaces.path.exists()
        assert store.last_namespace.get("after") is None

    def test_rollback_removes_files_that_did_not_exist(
        self, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store = SessionStore(settings)
        original = history_module._write_model

        def fail_on_last_namespace(path: Path, document) -> None:
            if path == store.last_namespace.path:
                raise ArtifactIOError(path, "read-only")
            original(path, document)

        monkeypatch.setattr(history_module, "_write_model", fail_on_last_namespace)
        with pytest.raises(ArtifactIOError):
            store.record_switch("ctx", "team-a")
        assert not store.contexts.path.exists()
        assert not store.namespaces.path.exists()

    def test_clear_everything(self, settings: Settings) -> None:
        store = SessionStore(settings)
        store.record_switch("staging", "team-a")
        store.clear()
        assert store.contexts.list() == []
        assert store.namespaces.list() == []
        assert store.last_namespace.get("staging") is None

    def test_clear_one_kind(self, settings: Settings) -> None:
        store = SessionStore(settings)
        store.record_switch("staging", "team-a")
        store.clear("namespace")
        assert store.contexts.latest() == "staging"
        assert store.namespaces.latest() is None
