"""Kubeconfig source documents and the named records parsed out of them."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog

log = structlog.get_logger()

ParseStatus = Literal["ok", "parse_error", "unreadable"]


@dataclass(frozen=True)
class SourceDocument:
    """A kubeconfig file as read from disk."""

    path: Path
    mtime: float
    status: ParseStatus
    priority: int
    content: dict[str, Any] = field(default_factory=dict, compare=False)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True)
class ClusterEntry:
    """A named cluster: API server plus TLS material."""

    name: str
    server: str | None
    has_ca: bool
    insecure: bool
    raw: dict[str, Any] = field(compare=False)
    source: Path


@dataclass(frozen=True)
class UserEntry:
    """A named credential set."""

    name: str
    auth_method: str
    raw: dict[str, Any] = field(compare=False)
    source: Path


@dataclass(frozen=True)
class ContextEntry:
    """A named (cluster, user, namespace) triple."""

    name: str
    cluster: str | None
    user: str | None
    namespace: str | None
    raw: dict[str, Any] = field(compare=False)
    source: Path


Entry = ClusterEntry | UserEntry | ContextEntry


def detect_auth_method(user: dict[str, Any]) -> str:
    """Classify the authentication mechanism of a kubeconfig user body."""
    if "exec" in user:
        return "exec"
    if "auth-provider" in user:
        return "auth-provider"
    if "token" in user or "tokenFile" in user:
        return "token"
    if "client-certificate" in user or "client-certificate-data" in user:
        return "client-certificate"
    if "username" in user or "password" in user:
        return "basic"
    return "none"


def _named_items(doc: SourceDocument, key: str) -> list[tuple[str, dict[str, Any], dict[str, Any]]]:
    """Yield (name, body, raw item) for each well-formed item of a top-level list."""
    items = doc.content.get(key) or []
    if not isinstance(items, list):
        log.warning("source_section_invalid", path=str(doc.path), section=key)
        return []

    body_key = key[:-1]
    results: list[tuple[str, dict[str, Any], dict[str, Any]]] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"]:
            log.warning("source_entry_skipped", path=str(doc.path), section=key, index=index, reason="missing name")
            continue
        body = item.get(body_key) or {}
        if not isinstance(body, dict):
            log.warning("source_entry_skipped", path=str(doc.path), section=key, name=item["name"], reason="not a mapping")
            continue
        results.append((item["name"], body, item))
    return results


def parse_clusters(doc: SourceDocument) -> list[ClusterEntry]:
    return [
        ClusterEntry(
            name=name,
            server=str(body["server"]) if body.get("server") else None,
            has_ca=bool(body.get("certificate-authority") or body.get("certificate-authority-data")),
            insecure=bool(body.get("insecure-skip-tls-verify")),
            raw=item,
            source=doc.path,
        )
        for name, body, item in _named_items(doc, "clusters")
    ]


def parse_users(doc: SourceDocument) -> list[UserEntry]:
    return [
        UserEntry(name=name, auth_method=detect_auth_method(body), raw=item, source=doc.path)
        for name, body, item in _named_items(doc, "users")
    ]


def parse_contexts(doc: SourceDocument) -> list[ContextEntry]:
    return [
        ContextEntry(
            name=name,
            cluster=str(body["cluster"]) if body.get("cluster") else None,
            user=str(body["user"]) if body.get("user") else None,
            namespace=str(body["namespace"]) if body.get("namespace") else None,
            raw=item,
            source=doc.path,
        )
        for name, body, item in _named_items(doc, "contexts")
    ]
