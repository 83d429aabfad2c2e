"""Owner-only atomic file writes and advisory locking for engine-owned state."""

from __future__ import annotations

import contextlib
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import structlog
import yaml
from filelock import FileLock, Timeout

from kubepick.errors import ArtifactIOError, LockTimeout, StoreCorrupted

log = structlog.get_logger()

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700
TEMP_SUFFIX = ".tmp"


def ensure_private_dir(path: Path) -> Path:
    """Create a directory and any missing parents, each readable only by its owner.

    Directories that already exist keep their permissions.
    """
    missing: list[Path] = []
    current = path
    while not current.exists() and current != current.parent:
        missing.append(current)
        current = current.parent

    try:
        for directory in reversed(missing):
            directory.mkdir(mode=PRIVATE_DIR_MODE, exist_ok=True)
            # mkdir's mode is filtered by the umask
            os.chmod(directory, PRIVATE_DIR_MODE)
    except OSError as e:
        raise ArtifactIOError(path, str(e)) from e
    return path


def atomic_write_text(path: Path, text: str) -> None:
    """Write a file atomically with owner-only permissions.

    The content goes to a temporary file in the destination directory, created 0600 by
    ``mkstemp``, then replaces the destination with ``os.replace``. Readers see either
    the old file or the new one, never a partial write.

    Raises:
        ArtifactIOError: If writing or renaming fails. The temporary file is removed.
    """
    ensure_private_dir(path.parent)
    try:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=TEMP_SUFFIX)
    except OSError as e:
        raise ArtifactIOError(path, str(e)) from e

    try:
        with os.fdopen(fd, "w") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise ArtifactIOError(path, str(e)) from e


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def read_yaml(path: Path) -> Any:
    """Load a YAML state file without locking. A missing file reads as None.

    Raises:
        StoreCorrupted: If the file exists but is not valid YAML.
    """
    try:
        text = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StoreCorrupted(path, str(e)) from e
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise StoreCorrupted(path, f"invalid YAML: {e}") from e


def lock_path_for(path: Path) -> Path:
    return path.with_name(f"{path.name}.lock")


@contextlib.contextmanager
def locked(path: Path, timeout: float) -> Iterator[None]:
    """Hold an exclusive advisory lock scoped to ``path`` for the duration of the block.

    The lock lives in ``<path>.lock``. ``flock`` locks die with their process, so a
    crashed holder never blocks new writers beyond the timeout.

    Raises:
        LockTimeout: If the lock is not acquired within ``timeout`` seconds.
    """
    ensure_private_dir(path.parent)
    lock = FileLock(str(lock_path_for(path)), timeout=timeout, mode=PRIVATE_FILE_MODE)
    try:
        lock.acquire()
    except Timeout:
        log.error("lock_timeout", path=str(path), timeout=timeout)
        raise LockTimeout(path, timeout) from None
    try:
        yield
    finally:
        lock.release()


@contextlib.contextmanager
def locked_many(paths: list[Path], timeout: float) -> Iterator[None]:
    """Lock several files, always in sorted path order so concurrent callers cannot deadlock."""
    with contextlib.ExitStack() as stack:
        for path in sorted(set(paths)):
            stack.enter_context(locked(path, timeout))
        yield
