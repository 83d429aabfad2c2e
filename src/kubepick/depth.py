"""Session nesting depth."""

from __future__ import annotations

import structlog

from kubepick.errors import DepthLimitExceeded

log = structlog.get_logger()

DEFAULT_MAX_DEPTH = 10


def parse_ambient_depth(value: str | None) -> int:
    """Interpret an inherited depth value; missing, malformed or negative counts as 0."""
    if not value:
        return 0
    try:
        depth = int(value.strip())
    except ValueError:
        log.debug("ambient_depth_ignored", value=value)
        return 0
    return max(depth, 0)


def compute_depth(ambient: int, recursive: bool, limit: int = DEFAULT_MAX_DEPTH) -> int:
    """Depth to export for a switch.

    A plain switch always yields 1, even inside a nested session. A recursive spawn
    yields ``ambient + 1``.

    Raises:
        DepthLimitExceeded: If a recursive spawn would go past ``limit``.
    """
    if not recursive:
        return 1
    depth = max(ambient, 0) + 1
    if depth > limit:
        raise DepthLimitExceeded(depth, limit)
    return depth
