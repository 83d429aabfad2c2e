"""Persisted engine state: switch history, last namespaces, and owner-only file I/O."""

from kubepick.store.history import HistoryLog, LastNamespaceMap, SessionStore

__all__ = ["HistoryLog", "LastNamespaceMap", "SessionStore"]
