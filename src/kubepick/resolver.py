"""Staged context and namespace resolution: alias, exact, glob, substring."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from fnmatch import fnmatchcase

import structlog

from kubepick.errors import AmbiguousMatch, ContextNotFound, InvalidInput, NamespaceNotFound
from kubepick.validation import validate_context_token, validate_namespace

log = structlog.get_logger()

MAX_SUGGESTIONS = 3

_GLOB_CHARS = ("*", "?", "[")

# Receives the token and ranked candidates, returns the chosen candidate.
Chooser = Callable[[str, list[str]], str]


class MatchStage(StrEnum):
    EXACT = "exact"
    GLOB = "glob"
    SUBSTRING = "substring"
    NONE = "none"


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one token against a name list."""

    token: str
    target: str
    stage: MatchStage
    candidates: tuple[str, ...]
    alias: str | None = None

    @property
    def unique(self) -> str | None:
        return self.candidates[0] if len(self.candidates) == 1 else None


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


def suggest(token: str, names: Sequence[str], limit: int = MAX_SUGGESTIONS) -> list[str]:
    """Return up to ``limit`` names nearest to the token by case-insensitive edit distance."""
    lowered = token.lower()
    ranked = sorted(names, key=lambda name: (levenshtein(lowered, name.lower()), name))
    return ranked[:limit]


def _rank(token: str, hits: list[str]) -> tuple[str, ...]:
    """Prefix matches first, then shorter names, then alphabetical."""
    lowered = token.lower().strip("*?[]")
    return tuple(sorted(hits, key=lambda name: (not name.lower().startswith(lowered), len(name), name)))


def _has_glob(token: str) -> bool:
    return any(ch in token for ch in _GLOB_CHARS)


def _substring_hits(token: str, names: Sequence[str]) -> list[str]:
    lowered = token.lower()
    return [name for name in names if lowered in name.lower()]


def match_context(token: str, names: Sequence[str], aliases: Mapping[str, str] | None = None) -> MatchResult:
    """Match a token against context names, first successful stage wins.

    Stages: alias substitution, exact, glob (only when the token has glob
    metacharacters), case-insensitive substring. A result with no candidates has
    stage ``NONE``.
    """
    alias = None
    target = token
    if aliases and token in aliases:
        alias = token
        target = aliases[token]
        log.debug("alias_applied", alias=token, target=target)

    if target in names:
        return MatchResult(token=token, target=target, stage=MatchStage.EXACT, candidates=(target,), alias=alias)

    if _has_glob(target):
        hits = [name for name in names if fnmatchcase(name, target)]
        if hits:
            return MatchResult(token, target, MatchStage.GLOB, _rank(target, hits), alias)

    hits = _substring_hits(target, names)
    if hits:
        return MatchResult(token, target, MatchStage.SUBSTRING, _rank(target, hits), alias)

    return MatchResult(token, target, MatchStage.NONE, (), alias)


def match_namespace(token: str, namespaces: Sequence[str]) -> MatchResult:
    """Match a namespace token: exact name, then case-insensitive substring. No globbing."""
    if token in namespaces:
        return MatchResult(token, token, MatchStage.EXACT, (token,))
    hits = _substring_hits(token, namespaces)
    if hits:
        return MatchResult(token, token, MatchStage.SUBSTRING, _rank(token, hits))
    return MatchResult(token, token, MatchStage.NONE, ())


def _choose(result: MatchResult, chooser: Chooser | None, kind: str) -> str:
    candidates = list(result.candidates)
    if chooser is None:
        raise AmbiguousMatch(result.target, candidates, kind=kind)
    choice = chooser(result.target, candidates)
    if choice not in candidates:
        msg = f"{choice!r} is not one of the {kind} candidates for {result.target!r}"
        raise InvalidInput(msg)
    return choice


def resolve_context(
    token: str,
    names: Sequence[str],
    aliases: Mapping[str, str] | None = None,
    chooser: Chooser | None = None,
) -> str:
    """Resolve a user token to exactly one canonical context name.

    Args:
        token: What the user typed.
        names: Context names of the current catalogue.
        aliases: Short name -> context name mapping, applied before matching.
        chooser: Interactive disambiguation, or None when not attached to a terminal.

    Returns:
        The canonical context name.

    Raises:
        ContextNotFound: No stage matched; carries edit-distance suggestions.
        AmbiguousMatch: Several candidates matched and no chooser was given.
    """
    validate_context_token(token)
    result = match_context(token, names, aliases)
    log.debug("context_matched", token=token, stage=str(result.stage), candidates=len(result.candidates))

    if result.stage is MatchStage.NONE:
        raise ContextNotFound(result.target, suggest(result.target, names))
    if result.unique is not None:
        return result.unique
    return _choose(result, chooser, "context")


def resolve_namespace(
    token: str,
    context: str,
    namespaces: Sequence[str] | None,
    chooser: Chooser | None = None,
) -> str:
    """Resolve a namespace token against the namespaces discovered for a context.

    When ``namespaces`` is None (discovery unavailable) the token is accepted as-is
    once it passes RFC 1123 validation.

    Raises:
        NamespaceNotFound: No namespace matched; carries suggestions.
        AmbiguousMatch: Several namespaces matched and no chooser was given.
        InvalidInput: The token is not a valid namespace name.
    """
    if namespaces is None:
        validate_namespace(token)
        return token

    result = match_namespace(token, namespaces)
    if result.stage is MatchStage.NONE:
        raise NamespaceNotFound(token, context, suggest(token, namespaces))
    if result.unique is not None:
        return result.unique
    return _choose(result, chooser, "namespace")
