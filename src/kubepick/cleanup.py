"""Garbage collection of generated kubeconfig artifacts."""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import structlog

from kubepick.errors import InvalidInput
from kubepick.isolation import ARTIFACT_SUFFIX, load_artifact, read_provenance
from kubepick.models import CleanupDecision, CleanupReport
from kubepick.store.fileio import TEMP_SUFFIX

log = structlog.get_logger()

SECONDS_PER_DAY = 86400
STALE_TEMP_SECONDS = 3600

# Receives the full candidate list, returns the subset to delete.
Selector = Callable[[list[CleanupDecision]], list[CleanupDecision]]


class Reason(StrEnum):
    ALL = "all"
    AGE = "age"
    ORPHANED = "orphaned"
    UNREADABLE = "unreadable"
    STALE_TEMP = "stale-temp"


@dataclass(frozen=True)
class CleanupOptions:
    days: int = 30
    orphaned: bool = False
    all: bool = False
    dry_run: bool = False
    from_file: Path | None = None


def _decide(
    path: Path, age_seconds: float, known_contexts: Collection[str], options: CleanupOptions
) -> CleanupDecision | None:
    provenance = read_provenance(load_artifact(path))
    age_days = round(age_seconds / SECONDS_PER_DAY, 2)
    context = provenance.context if provenance else None
    namespace = provenance.namespace if provenance else None

    if options.from_file is not None:
        target = os.path.abspath(os.path.expanduser(str(options.from_file)))
        if provenance is None or target not in provenance.sources:
            return None

    reason: Reason | None = None
    if options.all:
        reason = Reason.ALL
    elif age_seconds > options.days * SECONDS_PER_DAY:
        reason = Reason.AGE
    elif options.orphaned and provenance is None:
        reason = Reason.UNREADABLE
    elif options.orphaned and context not in known_contexts:
        reason = Reason.ORPHANED

    if reason is None:
        return None
    return CleanupDecision(
        path=str(path), context=context, namespace=namespace, reason=reason.value, age_days=age_days
    )


def collect_candidates(
    artifact_dir: Path,
    known_contexts: Collection[str],
    options: CleanupOptions,
    now: float | None = None,
) -> tuple[list[CleanupDecision], int]:
    """Scan the artifact directory and decide what to delete.

    Returns the deletion candidates (sorted by path) and the number of artifacts kept.
    Temp files abandoned by a crashed writer are candidates once older than an hour.
    """
    if not artifact_dir.is_dir():
        return [], 0
    now = time.time() if now is None else now

    candidates: list[CleanupDecision] = []
    kept = 0
    for path in sorted(artifact_dir.iterdir()):
        if not path.is_file():
            continue
        try:
            age_seconds = now - path.stat().st_mtime
        except FileNotFoundError:
            continue

        if path.name.startswith(".") and path.name.endswith(TEMP_SUFFIX):
            if options.from_file is None and age_seconds > STALE_TEMP_SECONDS:
                candidates.append(
                    CleanupDecision(
                        path=str(path),
                        reason=Reason.STALE_TEMP.value,
                        age_days=round(age_seconds / SECONDS_PER_DAY, 2),
                    )
                )
            continue
        if path.suffix != ARTIFACT_SUFFIX:
            continue

        decision = _decide(path, age_seconds, known_contexts, options)
        if decision is None:
            kept += 1
        else:
            candidates.append(decision)
    return candidates, kept


def run_cleanup(
    artifact_dir: Path,
    known_contexts: Collection[str],
    options: CleanupOptions,
    selector: Selector | None = None,
    now: float | None = None,
) -> CleanupReport:
    """Delete (or, with ``dry_run``, only report) artifacts selected by ``options``.

    A dry run reports exactly the set a live run with the same inputs would delete.
    Deletion failures are collected in the report rather than aborting the run.
    """
    candidates, kept = collect_candidates(artifact_dir, known_contexts, options, now=now)
    chosen = candidates
    if selector is not None and candidates:
        chosen = selector(candidates)
        kept += len(candidates) - len(chosen)

    report = CleanupReport(dry_run=options.dry_run, kept=kept)
    for decision in chosen:
        if options.dry_run:
            report.removed.append(decision)
            continue
        try:
            Path(decision.path).unlink()
        except FileNotFoundError:
            log.debug("artifact_already_removed", path=decision.path)
            continue
        except OSError as e:
            log.error("artifact_remove_failed", path=decision.path, error=str(e))
            report.errors.append(f"{decision.path}: {e}")
            continue
        report.removed.append(decision)

    log.info("cleanup_finished", dry_run=options.dry_run, removed=len(report.removed), kept=report.kept)
    return report


def parse_selection(text: str, count: int) -> list[int]:
    """Parse a selection like ``1,3-5``, ``all`` or ``none`` into zero-based indices.

    Raises:
        InvalidInput: On malformed input or numbers outside ``1..count``.
    """
    text = text.strip().lower()
    if text in ("", "none"):
        return []
    if text == "all":
        return list(range(count))

    selected: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start_text, end_text = part.split("-", 1)
                start, end = int(start_text), int(end_text)
            else:
                start = end = int(part)
        except ValueError:
            raise InvalidInput(f"Invalid selection: {part!r}. Use numbers and ranges like 1,3-5.") from None
        if start > end or start < 1 or end > count:
            raise InvalidInput(f"Selection {part!r} is out of range 1-{count}.")
        selected.update(range(start - 1, end))
    return sorted(selected)
