"""Unified catalogue of clusters, users and contexts with provenance."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from kubepick.catalogue.entries import (
    ClusterEntry,
    ContextEntry,
    Entry,
    SourceDocument,
    UserEntry,
    parse_clusters,
    parse_contexts,
    parse_users,
)
from kubepick.errors import ContextNotFound, IncompleteContext

log = structlog.get_logger()


@dataclass(frozen=True)
class ResolvedContext:
    """A context together with the cluster and user it points at."""

    context: ContextEntry
    cluster: ClusterEntry
    user: UserEntry

    @property
    def sources(self) -> tuple[Path, ...]:
        """Distinct contributing source files, in context/cluster/user order."""
        ordered: list[Path] = []
        for path in (self.context.source, self.cluster.source, self.user.source):
            if path not in ordered:
                ordered.append(path)
        return tuple(ordered)


@dataclass
class Catalogue:
    """All entries across the loaded documents.

    ``clusters``, ``users`` and ``contexts`` hold one entry per name: the first
    occurrence in source-priority order. ``occurrences`` keeps every (entry, source)
    pair per kind and name for diagnostics.
    """

    documents: list[SourceDocument]
    clusters: dict[str, ClusterEntry] = field(default_factory=dict)
    users: dict[str, UserEntry] = field(default_factory=dict)
    contexts: dict[str, ContextEntry] = field(default_factory=dict)
    occurrences: dict[str, dict[str, list[Entry]]] = field(
        default_factory=lambda: {"clusters": defaultdict(list), "users": defaultdict(list), "contexts": defaultdict(list)}
    )
    current_context: str | None = None

    @property
    def warnings(self) -> list[str]:
        return [f"{doc.path}: {doc.error}" for doc in self.documents if not doc.ok]

    def context_names(self) -> tuple[str, ...]:
        """Context names in source-priority order."""
        return tuple(self.contexts)

    def get_context(self, name: str) -> ContextEntry:
        try:
            return self.contexts[name]
        except KeyError:
            raise ContextNotFound(name) from None

    def resolve(self, name: str) -> ResolvedContext:
        """Look up a context and the cluster and user it references.

        Raises:
            ContextNotFound: If no such context exists.
            IncompleteContext: If the context lacks a cluster/user reference or the
                referenced entry is not defined in any source.
        """
        ctx = self.get_context(name)
        if ctx.cluster is None:
            raise IncompleteContext(name, "no cluster reference")
        if ctx.user is None:
            raise IncompleteContext(name, "no user reference")
        cluster = self.clusters.get(ctx.cluster)
        if cluster is None:
            raise IncompleteContext(name, f"cluster {ctx.cluster!r} is not defined")
        user = self.users.get(ctx.user)
        if user is None:
            raise IncompleteContext(name, f"user {ctx.user!r} is not defined")
        return ResolvedContext(context=ctx, cluster=cluster, user=user)

    def definitions(self, name: str) -> list[ContextEntry]:
        """Every definition of a context name, highest priority first."""
        return list(self.occurrences["contexts"].get(name, []))

    def duplicates(self) -> dict[str, list[Path]]:
        """Names defined in more than one place, mapped to their sources (all kinds)."""
        result: dict[str, list[Path]] = {}
        for kind, by_name in self.occurrences.items():
            for name, entries in by_name.items():
                if len(entries) > 1:
                    result[f"{kind[:-1]}/{name}"] = [e.source for e in entries]
        return result

    def source_paths(self) -> list[Path]:
        return [doc.path for doc in self.documents if doc.ok]


def _add(catalogue: Catalogue, kind: str, winners: dict[str, Any], entries: Sequence[Entry]) -> None:
    for entry in entries:
        catalogue.occurrences[kind][entry.name].append(entry)
        if entry.name in winners:
            log.debug("duplicate_entry_shadowed", kind=kind, name=entry.name, source=str(entry.source))
            continue
        winners[entry.name] = entry


def build_catalogue(documents: list[SourceDocument]) -> Catalogue:
    """Merge parsed documents into a catalogue.

    Documents must already be in priority order. Non-ok documents are carried for
    their warnings but contribute no entries. The first ``current-context`` found wins.
    """
    catalogue = Catalogue(documents=list(documents))
    for doc in sorted(documents, key=lambda d: d.priority):
        if not doc.ok:
            continue
        _add(catalogue, "clusters", catalogue.clusters, parse_clusters(doc))
        _add(catalogue, "users", catalogue.users, parse_users(doc))
        _add(catalogue, "contexts", catalogue.contexts, parse_contexts(doc))

        current = doc.content.get("current-context")
        if catalogue.current_context is None and isinstance(current, str) and current:
            catalogue.current_context = current

    log.debug(
        "catalogue_built",
        contexts=len(catalogue.contexts),
        clusters=len(catalogue.clusters),
        users=len(catalogue.users),
        warnings=len(catalogue.warnings),
    )
    return catalogue
