"""Crash-safe JSON file primitives shared by every store."""

from __future__ import annotations

import errno
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from .errors import CorruptDocumentError, StorageIOError


logger = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    """Create ``path`` and its parents; existing directories are fine."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageIOError(f"Could not create directory: {exc}", str(path), "mkdir") from exc
    return path


def file_exists(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


def read_json(path: Path, fallback: Any = None) -> Any:
    """Return the parsed document at ``path`` or ``fallback`` if it is absent.

    A file that exists but does not parse raises ``CorruptDocumentError`` so
    callers can tell "missing" apart from "damaged".
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return fallback
    except IsADirectoryError as exc:
        raise StorageIOError("Expected a file, found a directory", str(path), "read") from exc
    except OSError as exc:
        raise StorageIOError(f"Could not read document: {exc}", str(path), "read") from exc

    try:
        return json.loads(content)
    except ValueError as exc:
        raise CorruptDocumentError(f"Invalid JSON: {exc}", str(path), "parse") from exc


def _replace_atomic(path: Path, payload: str) -> None:
    ensure_dir(path.parent)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except OSError as exc:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise StorageIOError(f"Atomic write failed: {exc}", str(path), "write") from exc


def write_json_atomic(path: Path, value: Any) -> None:
    """Write ``value`` so that ``path`` holds either the old or the new document."""
    _replace_atomic(path, json.dumps(value, indent=2, sort_keys=True, default=str) + "\n")


def write_text_atomic(path: Path, text: str) -> None:
    _replace_atomic(path, text)


def remove_file(path: Path) -> bool:
    """Delete ``path``; returns ``False`` when it was already gone."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageIOError(f"Could not delete document: {exc}", str(path), "delete") from exc
    return True


def prune_empty_dirs(start: Path, stop_at: Path) -> None:
    """Remove ``start`` and empty parents up to (not including) ``stop_at``.

    Best effort: a directory that is not empty, or already gone, ends the walk.
    """
    current: Optional[Path] = start
    stop_at = stop_at.resolve()
    while current is not None and current.resolve() != stop_at and stop_at in current.resolve().parents:
        try:
            current.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            if exc.errno not in (errno.ENOTEMPTY, errno.EEXIST):
                logger.warning("Could not prune directory %s: %s", current, exc)
            return
        current = current.parent


__all__ = [
    "ensure_dir",
    "file_exists",
    "prune_empty_dirs",
    "read_json",
    "remove_file",
    "write_json_atomic",
    "write_text_atomic",
]
