"""Length-capped switch history and the context -> last namespace map."""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from kubepick.config import Settings
from kubepick.errors import ArtifactIOError, StoreCorrupted
from kubepick.models import HistoryDocument, HistoryEvent, HistoryKind, LastNamespaceDocument
from kubepick.store.fileio import atomic_write_text, dump_yaml, locked, locked_many, read_yaml
from kubepick.utils import utc_now_iso

log = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


def _load_model(path: Path, model: type[M]) -> M:
    raw = read_yaml(path)
    if raw is None:
        return model()
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise StoreCorrupted(path, f"{e.error_count()} validation error(s)") from e


def _write_model(path: Path, document: BaseModel) -> None:
    atomic_write_text(path, dump_yaml(document.model_dump(mode="json")))


class HistoryLog:
    """One ordered switch log (context or namespace), oldest event first on disk."""

    def __init__(self, path: Path, kind: HistoryKind, limit: int, lock_timeout: float) -> None:
        self.path = path
        self.kind = kind
        self.limit = limit
        self.lock_timeout = lock_timeout

    def load(self) -> HistoryDocument:
        """Read the log without locking. Writers replace the file atomically."""
        return _load_model(self.path, HistoryDocument)

    def appended(self, document: HistoryDocument, value: str) -> HistoryDocument:
        """Return a copy of ``document`` with one more event, oldest dropped past the cap."""
        event = HistoryEvent(kind=self.kind, value=value, timestamp=utc_now_iso())
        events = [*document.events, event]
        if len(events) > self.limit:
            events = events[-self.limit :]
        return HistoryDocument(version=document.version, events=events)

    def record(self, value: str) -> HistoryEvent:
        with locked(self.path, self.lock_timeout):
            document = self.appended(self.load(), value)
            _write_model(self.path, document)
        log.debug("history_recorded", kind=self.kind, value=value, size=len(document.events))
        return document.events[-1]

    def latest(self) -> str | None:
        events = self.load().events
        return events[-1].value if events else None

    def previous(self) -> str | None:
        """Most recent value that differs from the latest one, or None."""
        events = self.load().events
        if not events:
            return None
        latest = events[-1].value
        for event in reversed(events[:-1]):
            if event.value != latest:
                return event.value
        return None

    def clear(self) -> None:
        with locked(self.path, self.lock_timeout):
            _write_model(self.path, HistoryDocument())
        log.info("history_cleared", kind=self.kind)

    def list(self, limit: int | None = None) -> list[HistoryEvent]:
        """Events newest first, at most ``limit`` of them."""
        events = list(reversed(self.load().events))
        return events if limit is None else events[:limit]


class LastNamespaceMap:
    """Remembers the namespace last used with each context."""

    def __init__(self, path: Path, lock_timeout: float) -> None:
        self.path = path
        self.lock_timeout = lock_timeout

    def load(self) -> LastNamespaceDocument:
        return _load_model(self.path, LastNamespaceDocument)

    def get(self, context: str) -> str | None:
        return self.load().namespaces.get(context)

    def set(self, context: str, namespace: str) -> None:
        with locked(self.path, self.lock_timeout):
            document = self.load()
            document.namespaces[context] = namespace
            _write_model(self.path, document)

    def clear(self) -> None:
        with locked(self.path, self.lock_timeout):
            _write_model(self.path, LastNamespaceDocument())


class SessionStore:
    """All persisted switch state under one data directory."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.contexts = HistoryLog(
            settings.history_dir / "context.yaml", "context", settings.history_limit, settings.lock_timeout
        )
        self.namespaces = HistoryLog(
            settings.history_dir / "namespace.yaml", "namespace", settings.history_limit, settings.lock_timeout
        )
        self.last_namespace = LastNamespaceMap(settings.last_namespace_file, settings.lock_timeout)

    def log_for(self, kind: HistoryKind) -> HistoryLog:
        return self.contexts if kind == "context" else self.namespaces

    def record_switch(self, context: str, namespace: str | None = None) -> None:
        """Record a context switch and, when given, its namespace as one unit.

        All affected files are locked (in sorted path order) before anything is read.
        If a later write fails, files already written are restored to their previous
        content, so either every log reflects the switch or none does.

        Raises:
            LockTimeout: If any lock is not acquired in time.
            StoreCorrupted: If an existing file cannot be parsed.
            ArtifactIOError: If a write fails (after the rollback).
        """
        updates: list[tuple[Path, BaseModel]] = []
        paths = [self.contexts.path]
        if namespace is not None:
            paths += [self.namespaces.path, self.last_namespace.path]

        with locked_many(paths, self.settings.lock_timeout):
            updates.append((self.contexts.path, self.contexts.appended(self.contexts.load(), context)))
            if namespace is not None:
                updates.append((self.namespaces.path, self.namespaces.appended(self.namespaces.load(), namespace)))
                last = self.last_namespace.load()
                last.namespaces[context] = namespace
                updates.append((self.last_namespace.path, last))

            backups = {path: _snapshot(path) for path, _ in updates}
            written: list[Path] = []
            try:
                for path, document in updates:
                    _write_model(path, document)
                    written.append(path)
            except ArtifactIOError:
                log.error("switch_record_failed", context=context, namespace=namespace, written=len(written))
                for path in reversed(written):
                    _restore(path, backups[path])
                raise

        log.debug("switch_recorded", context=context, namespace=namespace)

    def clear(self, kind: HistoryKind | None = None) -> None:
        """Clear one history log, or every log and the last-namespace map."""
        if kind is not None:
            self.log_for(kind).clear()
            return
        self.contexts.clear()
        self.namespaces.clear()
        self.last_namespace.clear()


def _snapshot(path: Path) -> str | None:
    try:
        return path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ArtifactIOError(path, str(e)) from e


def _restore(path: Path, content: str | None) -> None:
    try:
        if content is None:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
        else:
            atomic_write_text(path, content)
    except (OSError, ArtifactIOError) as e:
        log.error("switch_rollback_failed", path=str(path), error=str(e))


def dump_state(store: SessionStore) -> dict[str, Any]:
    """Plain-data view of the persisted state for ``info config``."""
    return {
        "data_dir": str(store.settings.data_dir),
        "context_history": str(store.contexts.path),
        "namespace_history": str(store.namespaces.path),
        "last_namespace": str(store.last_namespace.path),
    }
