"""Error taxonomy for the session engine.

Every error carries a one-line cause (the exception message) and, where one exists,
the next actionable step (``hint``). The CLI prints both; library callers can rely on
the concrete class.
"""

from __future__ import annotations

from pathlib import Path


class KubepickError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class InvalidInput(KubepickError):
    """A user-supplied value failed validation."""


class ConfigNotFound(KubepickError):
    """No usable kubeconfig source could be found."""

    def __init__(self, searched: list[Path] | None = None, detail: str | None = None) -> None:
        self.searched = list(searched or [])
        message = detail or "no readable kubeconfig files found"
        if self.searched:
            message = f"{message} (searched: {', '.join(str(p) for p in self.searched)})"
        super().__init__(message, hint="Pass --kubeconfig, set KUBECONFIG, or add configs.include patterns.")


class ConfigParseError(KubepickError):
    """A configuration document could not be parsed."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"cannot parse {path}: {detail}", hint=f"Fix the YAML in {path}.")


class ContextNotFound(KubepickError):
    """A token resolved to no context."""

    def __init__(self, token: str, suggestions: list[str] | None = None) -> None:
        self.token = token
        self.suggestions = list(suggestions or [])
        hint = "Run 'kubepick contexts' to list available contexts."
        if self.suggestions:
            hint = f"Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(f"context {token!r} not found", hint=hint)


class AmbiguousMatch(KubepickError):
    """A token matched more than one candidate outside an interactive terminal."""

    def __init__(self, token: str, candidates: list[str], kind: str = "context") -> None:
        self.token = token
        self.candidates = list(candidates)
        self.kind = kind
        listed = ", ".join(self.candidates)
        super().__init__(
            f"{kind} {token!r} is ambiguous: matches {listed}",
            hint=f"Use a longer or exact {kind} name.",
        )


class NamespaceNotFound(KubepickError):
    """A namespace token matched none of the namespaces of the context."""

    def __init__(self, token: str, context: str, suggestions: list[str] | None = None) -> None:
        self.token = token
        self.context = context
        self.suggestions = list(suggestions or [])
        hint = f"Run 'kubepick ns' to pick from the namespaces of {context}."
        if self.suggestions:
            hint = f"Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(f"namespace {token!r} not found in context {context!r}", hint=hint)


class IncompleteContext(KubepickError):
    """A context references a cluster or user that is not defined anywhere."""

    def __init__(self, context: str, missing: str) -> None:
        self.context = context
        self.missing = missing
        super().__init__(
            f"context {context!r} is incomplete: {missing}",
            hint="Run 'kubepick which' to see which file defines the context.",
        )


class NoPreviousValue(KubepickError):
    """``-`` was requested but the history holds no earlier distinct value."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"no previous {kind} in history", hint=f"Switch {kind} at least twice before using '-'.")


class LockTimeout(KubepickError):
    """An advisory lock was not acquired within the configured timeout."""

    def __init__(self, path: Path, timeout: float) -> None:
        self.path = path
        self.timeout = timeout
        super().__init__(
            f"timed out after {timeout:g}s waiting for lock on {path}",
            hint="Another kubepick process holds the lock; retry, or raise KUBEPICK_LOCK_TIMEOUT.",
        )


class ArtifactIOError(KubepickError):
    """Writing, renaming or removing an engine-owned file failed."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        super().__init__(f"cannot write {path}: {detail}", hint="Check permissions and free space in the data directory.")


class StoreCorrupted(KubepickError):
    """A history or last-namespace file exists but holds invalid content."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        super().__init__(f"state file {path} is corrupt: {detail}", hint="Run 'kubepick history --clear' to reset it.")


class DepthLimitExceeded(KubepickError):
    """A recursive spawn would exceed the nesting cap."""

    def __init__(self, depth: int, limit: int) -> None:
        self.depth = depth
        self.limit = limit
        super().__init__(
            f"session depth {depth} exceeds the limit of {limit}",
            hint="Exit some nested shells; a spawn loop is likely.",
        )
