"""Render session results as statements a shell can evaluate."""

from __future__ import annotations

import json
import shlex
from collections.abc import Mapping

from kubepick.models import SessionResult
from kubepick.validation import validate_dialect

SESSION_KEYS = ("KUBECONFIG", "KUBEPICK_CONTEXT", "KUBEPICK_NAMESPACE", "OC_NAMESPACE", "KUBEPICK_DEPTH")

_POSIX = ("bash", "zsh", "sh")


def _fish_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _powershell_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _assign(dialect: str, key: str, value: str | None) -> str:
    if dialect in _POSIX:
        return f"unset {key};" if value is None else f"export {key}={shlex.quote(value)};"
    if dialect == "fish":
        return f"set -e {key};" if value is None else f"set -gx {key} {_fish_quote(value)};"
    # powershell
    if value is None:
        return f"Remove-Item Env:{key} -ErrorAction SilentlyContinue"
    return f"$env:{key} = {_powershell_quote(value)}"


def apply_env(base: Mapping[str, str], updates: Mapping[str, str | None]) -> dict[str, str]:
    """A copy of ``base`` with ``updates`` applied; None removes the key."""
    env = dict(base)
    for key, value in updates.items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return env


def render(result: SessionResult, dialect: str = "bash") -> str:
    """Render a session result for the given dialect.

    Keys without a value (no namespace) are unset so a stale value from an earlier
    switch never leaks into the new session.
    """
    validate_dialect(dialect)
    env = result.env()
    if dialect == "json":
        return json.dumps({"env": env, **result.model_dump(mode="json")}, indent=2)
    return "\n".join(_assign(dialect, key, value) for key, value in env.items())


def render_unset(dialect: str = "bash") -> str:
    """Statements that remove every session key from the environment."""
    validate_dialect(dialect)
    if dialect == "json":
        return json.dumps({"env": dict.fromkeys(SESSION_KEYS)}, indent=2)
    return "\n".join(_assign(dialect, key, None) for key in SESSION_KEYS)
