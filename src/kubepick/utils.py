"""Shared utility functions used across engine modules."""

from __future__ import annotations

import re
from datetime import UTC, datetime

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|\s]')


def parse_iso_timestamp(ts_str: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp string to a timezone-aware datetime.

    Returns None for empty/None input or unparseable strings.
    """
    if not ts_str:
        return None
    try:
        parsed = datetime.fromisoformat(ts_str)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def sanitize_filename(value: str) -> str:
    """Replace path separators and shell-hostile characters with underscores."""
    return _UNSAFE_FILENAME_CHARS.sub("_", value)


def format_age(seconds: float) -> str:
    """Render an elapsed duration as a compact age string (``42s``, ``5m``, ``3h``, ``2d``)."""
    elapsed = max(0, int(seconds))
    if elapsed < 60:
        return f"{elapsed}s"
    if elapsed < 3600:
        return f"{elapsed // 60}m"
    if elapsed < 86400:
        return f"{elapsed // 3600}h"
    return f"{elapsed // 86400}d"
