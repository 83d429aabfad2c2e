"""Pydantic v2 models for engine results, persisted state, and diagnostics."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

HistoryKind = Literal["context", "namespace"]


# --- Session results ---


class SessionResult(BaseModel):
    """Dialect-agnostic key/value result of a context or namespace switch."""

    kubeconfig: str
    context: str
    label: str
    namespace: str | None = None
    depth: int
    hooks: dict[str, str] = Field(default_factory=dict)

    def env(self) -> dict[str, str | None]:
        """Environment assignments for this session; ``None`` means unset."""
        return {
            "KUBECONFIG": self.kubeconfig,
            "KUBEPICK_CONTEXT": self.context,
            "KUBEPICK_NAMESPACE": self.namespace,
            "OC_NAMESPACE": self.namespace,
            "KUBEPICK_DEPTH": str(self.depth),
        }


# --- History store ---


class HistoryEvent(BaseModel):
    """A single recorded switch."""

    kind: HistoryKind
    value: str
    timestamp: str


class HistoryDocument(BaseModel):
    """On-disk shape of one history log."""

    version: int = 1
    events: list[HistoryEvent] = Field(default_factory=list)


class LastNamespaceDocument(BaseModel):
    """On-disk shape of the context -> last namespace map."""

    version: int = 1
    namespaces: dict[str, str] = Field(default_factory=dict)


# --- Garbage collection ---


class CleanupDecision(BaseModel):
    """One artifact selected for deletion and why."""

    path: str
    context: str | None = None
    namespace: str | None = None
    reason: str
    age_days: float


class CleanupReport(BaseModel):
    """Outcome of a garbage collection run."""

    dry_run: bool
    removed: list[CleanupDecision] = Field(default_factory=list)
    kept: int = 0
    errors: list[str] = Field(default_factory=list)


# --- Diagnostics ---


class ContextSource(BaseModel):
    """One definition of a context name in one source file."""

    path: str
    active: bool


class ContextInfo(BaseModel):
    """Provenance and classification of a context for the ``which`` view."""

    name: str
    label: str
    cluster_type: str
    cluster: str | None = None
    user: str | None = None
    namespace: str | None = None
    server: str | None = None
    sources: list[ContextSource] = Field(default_factory=list)


LintSeverity = Literal["error", "warning"]


class LintIssue(BaseModel):
    """One problem found in one kubeconfig source."""

    path: str
    severity: LintSeverity
    message: str


class LintReport(BaseModel):
    """Diagnostics across every checked source."""

    files: int = 0
    issues: list[LintIssue] = Field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "warning")

    def failed(self, strict: bool = False) -> bool:
        """Errors always fail; warnings fail only in strict mode."""
        return self.errors > 0 or (strict and self.warnings > 0)
