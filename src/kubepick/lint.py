"""Diagnostics for kubeconfig sources: unreadable files, dangling references, unused entries."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import structlog

from kubepick.catalogue import Catalogue, build_catalogue
from kubepick.catalogue.entries import SourceDocument, parse_clusters, parse_contexts, parse_users
from kubepick.catalogue.loader import read_document
from kubepick.errors import IncompleteContext
from kubepick.models import LintIssue, LintReport, LintSeverity

log = structlog.get_logger()


def _issue(path: Path, severity: LintSeverity, message: str) -> LintIssue:
    return LintIssue(path=str(path), severity=severity, message=message)


def _check_document(doc: SourceDocument, catalogue: Catalogue) -> list[LintIssue]:
    if doc.status == "unreadable":
        return [_issue(doc.path, "error", f"cannot be read: {doc.error}")]
    if not doc.ok:
        return [_issue(doc.path, "error", f"is not a valid kubeconfig: {doc.error}")]

    issues: list[LintIssue] = []
    contexts = parse_contexts(doc)
    if not contexts:
        issues.append(_issue(doc.path, "warning", "defines no contexts"))

    # a context in any loaded file may use a cluster or user defined here
    all_contexts = [entry for entries in catalogue.occurrences["contexts"].values() for entry in entries]
    used_clusters = {entry.cluster for entry in all_contexts}
    used_users = {entry.user for entry in all_contexts}
    for cluster in parse_clusters(doc):
        if cluster.name not in used_clusters:
            issues.append(_issue(doc.path, "warning", f"cluster {cluster.name!r} is not used by any context"))
    for user in parse_users(doc):
        if user.name not in used_users:
            issues.append(_issue(doc.path, "warning", f"user {user.name!r} is not used by any context"))

    current = doc.content.get("current-context")
    if isinstance(current, str) and current and current not in catalogue.contexts:
        issues.append(_issue(doc.path, "error", f"current-context {current!r} is not defined"))
    return issues


def _check_references(catalogue: Catalogue) -> list[LintIssue]:
    issues = []
    for name, entry in catalogue.contexts.items():
        try:
            catalogue.resolve(name)
        except IncompleteContext as e:
            issues.append(_issue(entry.source, "error", f"context {name!r}: {e.missing}"))
    return issues


def lint_documents(documents: Sequence[SourceDocument]) -> LintReport:
    """Check already-read documents, each on its own and as one merged catalogue."""
    catalogue = build_catalogue(list(documents))
    issues: list[LintIssue] = []
    for doc in documents:
        issues.extend(_check_document(doc, catalogue))
    issues.extend(_check_references(catalogue))

    report = LintReport(files=len(documents), issues=issues)
    log.info("lint_finished", files=report.files, errors=report.errors, warnings=report.warnings)
    return report


def lint_paths(paths: Sequence[Path]) -> LintReport:
    """Read and check kubeconfig files. Missing or malformed files are reported, not raised."""
    return lint_documents([read_document(path, priority) for priority, path in enumerate(paths)])
