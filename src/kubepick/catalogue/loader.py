"""Kubeconfig source discovery and parsing."""

from __future__ import annotations

import glob
import os
import re
from dataclasses import dataclass, field
from enum import StrEnum
from fnmatch import fnmatch
from pathlib import Path

import structlog
import yaml

from kubepick.catalogue.entries import SourceDocument
from kubepick.config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS, expand_home
from kubepick.errors import ConfigNotFound

log = structlog.get_logger()

DEFAULT_KUBECONFIG = "~/.kube/config"

_ENV_SPLIT_RE = re.compile(r"[:;]")
_GLOB_CHARS = ("*", "?", "[")


class LoadMode(StrEnum):
    """How precedence tiers combine."""

    SINGLE = "single"
    AGGREGATE = "aggregate"


@dataclass(frozen=True)
class SourceRequest:
    """Everything the loader needs to find kubeconfig files, passed in explicitly."""

    override: Path | None = None
    kubeconfig_env: str | None = None
    directories: tuple[Path, ...] = ()
    include: tuple[str, ...] = DEFAULT_INCLUDE_PATTERNS
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    default_path: str = DEFAULT_KUBECONFIG
    ignore_dirs: tuple[Path, ...] = field(default_factory=tuple)


def _normalize(path: Path) -> Path:
    return Path(os.path.abspath(expand_home(path)))


def split_kubeconfig_env(value: str | None) -> list[Path]:
    """Split a KUBECONFIG-style value on ``:`` and ``;``, dropping empty segments."""
    if not value:
        return []
    return [Path(part) for part in _ENV_SPLIT_RE.split(value) if part.strip()]


def scan_directory(directory: Path) -> list[Path]:
    """Return kubeconfig-looking files (``config``, ``*.yaml``, ``*.yml``) in a directory."""
    directory = expand_home(directory)
    if not directory.is_dir():
        log.debug("kubeconfig_dir_missing", directory=str(directory))
        return []
    return sorted(
        p for p in directory.iterdir() if p.is_file() and (p.name == "config" or p.suffix in (".yaml", ".yml"))
    )


def matches_any(path: Path, patterns: tuple[str, ...]) -> bool:
    """Check a path against glob patterns, expanding ``~`` in each pattern."""
    text = str(path)
    return any(fnmatch(text, str(_normalize(Path(pattern)))) for pattern in patterns)


def find_from_patterns(include: tuple[str, ...], exclude: tuple[str, ...]) -> list[Path]:
    """Expand include patterns, then drop excluded paths. Zero-match patterns are not errors."""
    paths: list[Path] = []
    for pattern in include:
        expanded = str(expand_home(pattern))
        if any(ch in pattern for ch in _GLOB_CHARS):
            candidates = [Path(p) for p in sorted(glob.glob(expanded))]
        else:
            candidates = [Path(expanded)]
        for candidate in candidates:
            normalized = _normalize(candidate)
            if candidate.is_file() and not matches_any(normalized, exclude):
                paths.append(normalized)
    return paths


class _PathCollector:
    """Ordered, de-duplicated path list that skips engine-owned directories."""

    def __init__(self, ignore_dirs: tuple[Path, ...]) -> None:
        self._ignore = tuple(_normalize(d) for d in ignore_dirs)
        self._seen: set[Path] = set()
        self.paths: list[Path] = []

    def add_all(self, paths: list[Path]) -> int:
        added = 0
        for path in paths:
            normalized = _normalize(path)
            if normalized in self._seen:
                continue
            if any(normalized.is_relative_to(d) for d in self._ignore):
                log.debug("source_ignored", path=str(normalized), reason="engine artifact")
                continue
            self._seen.add(normalized)
            self.paths.append(normalized)
            added += 1
        return added


def discover_paths(request: SourceRequest, mode: LoadMode = LoadMode.AGGREGATE) -> list[Path]:
    """Resolve candidate kubeconfig paths in precedence order.

    Tiers: explicit override, KUBECONFIG, explicit directories, configured glob patterns,
    then the default path. An override is always exclusive. In single mode the first
    tier yielding at least one existing file wins; in aggregate mode every tier
    contributes and the default is used only when nothing else was found.

    Raises:
        ConfigNotFound: If an explicit override does not exist.
    """
    if request.override is not None:
        override = _normalize(request.override)
        if not override.is_file():
            raise ConfigNotFound(detail=f"kubeconfig file not found: {override}")
        return [override]

    tiers = [
        lambda: [p for p in split_kubeconfig_env(request.kubeconfig_env) if expand_home(p).is_file()],
        lambda: [p for d in request.directories for p in scan_directory(d)],
        lambda: find_from_patterns(request.include, request.exclude),
    ]

    collector = _PathCollector(request.ignore_dirs)
    for tier in tiers:
        added = collector.add_all(tier())
        if mode is LoadMode.SINGLE and added:
            return collector.paths

    if not collector.paths:
        default = expand_home(request.default_path)
        if default.is_file():
            collector.add_all([default])
    return collector.paths


def read_document(path: Path, priority: int) -> SourceDocument:
    """Read and parse one kubeconfig file. Failures are recorded on the document, never raised."""
    try:
        mtime = path.stat().st_mtime
        text = path.read_text()
    except OSError as e:
        log.warning("source_unreadable", path=str(path), error=str(e))
        return SourceDocument(path=path, mtime=0.0, status="unreadable", priority=priority, error=str(e))

    try:
        content = yaml.safe_load(text)
    except yaml.YAMLError as e:
        log.warning("source_parse_failed", path=str(path), error=str(e))
        return SourceDocument(path=path, mtime=mtime, status="parse_error", priority=priority, error=str(e))

    if content is None:
        content = {}
    if not isinstance(content, dict):
        detail = f"top level is {type(content).__name__}, expected a mapping"
        log.warning("source_parse_failed", path=str(path), error=detail)
        return SourceDocument(path=path, mtime=mtime, status="parse_error", priority=priority, error=detail)

    return SourceDocument(path=path, mtime=mtime, status="ok", priority=priority, content=content)


def load_sources(request: SourceRequest, mode: LoadMode = LoadMode.AGGREGATE) -> list[SourceDocument]:
    """Discover and read kubeconfig sources in priority order.

    Malformed files are kept in the result with a non-ok status so callers can report
    them; they never abort the load.

    Raises:
        ConfigNotFound: If no discovered file parsed successfully.
    """
    paths = discover_paths(request, mode)
    documents = [read_document(path, priority) for priority, path in enumerate(paths)]
    if not any(doc.ok for doc in documents):
        raise ConfigNotFound(searched=paths)
    log.debug("sources_loaded", count=len(documents), mode=str(mode))
    return documents
