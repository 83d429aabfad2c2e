"""Input validation helpers for CLI and engine parameters."""

from __future__ import annotations

import re

from kubepick.errors import InvalidInput

# RFC 1123 label: lowercase alphanumeric and hyphens, 1-63 chars, starts/ends with alphanumeric
_NAMESPACE_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")

_VALID_DIALECTS = {"bash", "zsh", "sh", "fish", "powershell", "json"}

_VALID_INFO_FIELDS = {"ctx", "ns", "depth", "config", "all"}


def validate_namespace(namespace: str | None) -> None:
    """Validate a Kubernetes namespace name against RFC 1123."""
    if namespace is None:
        return
    if not _NAMESPACE_RE.match(namespace):
        msg = f"Invalid namespace: {namespace!r}. Must be a valid RFC 1123 label."
        raise InvalidInput(msg)


def validate_context_token(token: str) -> None:
    """Reject empty or whitespace-only context tokens."""
    if not token or not token.strip():
        raise InvalidInput("Context name must not be empty.")


def validate_dialect(dialect: str) -> None:
    """Validate the output dialect for rendered session results."""
    if dialect not in _VALID_DIALECTS:
        valid = ", ".join(sorted(_VALID_DIALECTS))
        msg = f"Invalid shell: {dialect!r}. Must be one of: {valid}"
        raise InvalidInput(msg)


def validate_info_field(what: str) -> None:
    if what not in _VALID_INFO_FIELDS:
        valid = ", ".join(sorted(_VALID_INFO_FIELDS))
        msg = f"Invalid info field: {what!r}. Must be one of: {valid}"
        raise InvalidInput(msg)


def validate_positive(name: str, value: int) -> None:
    if value < 1:
        msg = f"Invalid {name}: {value}. Must be at least 1."
        raise InvalidInput(msg)
