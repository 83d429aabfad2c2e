"""Per-session kubeconfig artifacts containing exactly one context."""

from __future__ import annotations

import copy
import hashlib
import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

import structlog
import yaml

from kubepick.catalogue import Catalogue, ResolvedContext
from kubepick.errors import ArtifactIOError, ContextNotFound
from kubepick.store.fileio import atomic_write_text, dump_yaml, ensure_private_dir
from kubepick.utils import sanitize_filename, utc_now_iso

log = structlog.get_logger()

EXTENSION_NAME = "kubepick"
ARTIFACT_SUFFIX = ".yaml"
_HASH_LENGTH = 12
_CA_KEYS = ("certificate-authority", "certificate-authority-data")


@dataclass(frozen=True)
class Provenance:
    """Origin of an artifact, embedded in its ``extensions`` list."""

    context: str
    namespace: str | None
    sources: tuple[str, ...]
    generated_at: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    path: Path
    created: bool
    # st_mtime_ns right after this call wrote the file; None when reused
    mtime_ns: int | None = None


def artifact_name(context: str, namespace: str | None = None) -> str:
    """Deterministic file name for a (context, namespace) pair.

    The readable prefix can collide after sanitizing, so a short hash of the exact
    identity is appended.
    """
    identity = f"{context}\0{namespace or ''}"
    digest = hashlib.sha256(identity.encode()).hexdigest()[:_HASH_LENGTH]
    stem = sanitize_filename(context)
    if namespace:
        stem = f"{stem}__{sanitize_filename(namespace)}"
    return f"{stem}-{digest}{ARTIFACT_SUFFIX}"


def read_provenance(document: Any) -> Provenance | None:
    """Extract the kubepick extension from a parsed artifact, or None if absent or malformed."""
    if not isinstance(document, dict):
        return None
    for item in document.get("extensions") or []:
        if not isinstance(item, dict) or item.get("name") != EXTENSION_NAME:
            continue
        ext = item.get("extension")
        if not isinstance(ext, dict) or not isinstance(ext.get("context"), str):
            return None
        sources = ext.get("sources") or []
        return Provenance(
            context=ext["context"],
            namespace=ext.get("namespace"),
            sources=tuple(str(s) for s in sources) if isinstance(sources, list) else (),
            generated_at=ext.get("generated_at"),
        )
    return None


def load_artifact(path: Path) -> Any:
    """Parse an artifact file. Returns None if it cannot be read or parsed."""
    try:
        return yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        log.debug("artifact_unreadable", path=str(path), error=str(e))
        return None


def _without_timestamp(document: Any) -> Any:
    if not isinstance(document, dict):
        return document
    stripped = copy.deepcopy(document)
    for item in stripped.get("extensions") or []:
        if isinstance(item, dict) and isinstance(item.get("extension"), dict):
            item["extension"].pop("generated_at", None)
    return stripped


class IsolationGenerator:
    """Writes single-context kubeconfig artifacts into a private directory."""

    def __init__(self, catalogue: Catalogue, artifact_dir: Path, insecure_contexts: tuple[str, ...] = ()) -> None:
        self._catalogue = catalogue
        self._artifact_dir = artifact_dir
        self._insecure_contexts = insecure_contexts

    def artifact_path(self, context: str, namespace: str | None = None) -> Path:
        return self._artifact_dir / artifact_name(context, namespace)

    def is_insecure(self, context: str) -> bool:
        return any(fnmatchcase(context, pattern) for pattern in self._insecure_contexts)

    def build(self, resolved: ResolvedContext, namespace: str | None = None) -> dict[str, Any]:
        """Assemble the artifact document for a resolved context."""
        name = resolved.context.name

        cluster = copy.deepcopy(resolved.cluster.raw)
        if self.is_insecure(name):
            body = cluster.setdefault("cluster", {})
            for key in _CA_KEYS:
                body.pop(key, None)
            body["insecure-skip-tls-verify"] = True

        context = copy.deepcopy(resolved.context.raw)
        if namespace:
            context.setdefault("context", {})["namespace"] = namespace

        provenance = {
            "context": name,
            "namespace": namespace,
            "sources": [str(p) for p in resolved.sources],
            "generated_at": utc_now_iso(),
        }
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "preferences": {},
            "clusters": [cluster],
            "users": [copy.deepcopy(resolved.user.raw)],
            "contexts": [context],
            "current-context": name,
            "extensions": [{"name": EXTENSION_NAME, "extension": provenance}],
        }

    def _newest_source_mtime(self, resolved: ResolvedContext) -> float:
        mtimes = {doc.path: doc.mtime for doc in self._catalogue.documents}
        return max((mtimes.get(path, 0.0) for path in resolved.sources), default=0.0)

    def _reusable(self, path: Path, resolved: ResolvedContext, document: dict[str, Any]) -> bool:
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return False
        except OSError as e:
            raise ArtifactIOError(path, str(e)) from e
        if mtime < self._newest_source_mtime(resolved):
            log.debug("artifact_stale", path=str(path), reason="source newer")
            return False
        existing = load_artifact(path)
        if _without_timestamp(existing) != _without_timestamp(document):
            log.debug("artifact_stale", path=str(path), reason="content changed")
            return False
        return True

    def generate(self, context: str, namespace: str | None = None) -> GenerationResult:
        """Return an artifact for ``(context, namespace)``, writing it only when needed.

        An existing artifact is reused when no contributing source is newer and its
        content (apart from the generation time) is what would be written now. A
        reused artifact has its mtime refreshed so age-based cleanup counts from the
        last use.

        Raises:
            ContextNotFound: If the context is not in the catalogue.
            IncompleteContext: If its cluster or user is missing.
            ArtifactIOError: If the artifact cannot be written.
        """
        if context not in self._catalogue.contexts:
            raise ContextNotFound(context)
        resolved = self._catalogue.resolve(context)
        document = self.build(resolved, namespace)
        path = self.artifact_path(context, namespace)
        ensure_private_dir(self._artifact_dir)

        if self._reusable(path, resolved, document):
            try:
                os.utime(path)
            except OSError as e:
                log.warning("artifact_touch_failed", path=str(path), error=str(e))
            log.debug("artifact_reused", path=str(path), context=context, namespace=namespace)
            return GenerationResult(path=path, created=False)

        atomic_write_text(path, dump_yaml(document))
        log.info("artifact_written", path=str(path), context=context, namespace=namespace)
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None
        return GenerationResult(path=path, created=True, mtime_ns=mtime_ns)
