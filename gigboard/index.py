"""Id -> path index for one entity type, held in a time-boxed memory cache.

The index only makes lookups cheap. The files under the entity root are the
source of truth: an entry whose document has vanished is stale and readers
must fall back to scanning.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Optional

from .errors import CorruptDocumentError, InvalidPathError
from .fs_json import file_exists, read_json, write_json_atomic
from .paths import EntityLayout, utc_now_iso


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0

IndexData = Dict[str, Dict[str, Any]]


class EntityIndex:
    def __init__(
        self,
        layout: EntityLayout,
        data_dir: Path,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.layout = layout
        self.data_dir = data_dir
        self.path = layout.index_path(data_dir)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = RLock()
        self._cache: Optional[IndexData] = None
        self._loaded_at: Optional[float] = None
        self.hits = 0
        self.misses = 0

    # -- cache -----------------------------------------------------------

    def _is_fresh(self) -> bool:
        if self._cache is None or self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self.ttl_seconds

    @staticmethod
    def _copy(index: IndexData) -> IndexData:
        return {key: dict(value) for key, value in index.items()}

    def invalidate(self) -> None:
        """Force the next :meth:`load` to read from disk."""
        with self._lock:
            self._loaded_at = None

    def clear(self) -> None:
        """Drop the cached view entirely."""
        with self._lock:
            self._cache = None
            self._loaded_at = None
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entity_type": self.layout.entity_type,
                "cached": self._cache is not None,
                "fresh": self._is_fresh(),
                "entries": len(self._cache or {}),
                "hits": self.hits,
                "misses": self.misses,
                "ttl_seconds": self.ttl_seconds,
            }

    # -- persistence -----------------------------------------------------

    def load(self) -> IndexData:
        """Return the whole index.

        Raises ``CorruptDocumentError`` when the index file cannot be parsed;
        read paths treat that as an empty index, write paths rebuild it.
        """
        with self._lock:
            if self._is_fresh():
                self.hits += 1
                return self._copy(self._cache or {})

            self.misses += 1
            raw = read_json(self.path, {})
            if not isinstance(raw, dict):
                raise CorruptDocumentError("Index is not a JSON object", str(self.path), "load")

            index: IndexData = {}
            for key, value in raw.items():
                if isinstance(value, dict) and isinstance(value.get("path"), str):
                    index[str(key)] = dict(value)
                else:
                    logger.warning(
                        "Ignoring malformed %s index entry %r", self.layout.entity_type, key
                    )
            self._cache = index
            self._loaded_at = self._clock()
            return self._copy(index)

    def _load_for_update(self) -> IndexData:
        try:
            return self.load()
        except CorruptDocumentError as exc:
            logger.warning("Rebuilding corrupt %s index at %s: %s", self.layout.entity_type, self.path, exc)
            return {}

    def save(self, index: IndexData) -> None:
        with self._lock:
            for key, value in index.items():
                if not self.layout.is_valid(value.get("path", "")):
                    raise InvalidPathError(
                        f"Refusing to persist invalid path {value.get('path')!r} for id {key}",
                        str(self.path),
                        "save-index",
                    )
            write_json_atomic(self.path, index)
            self._cache = self._copy(index)
            self._loaded_at = self._clock()

    # -- entries ---------------------------------------------------------

    def get_entry(self, entity_id: Any) -> Optional[Dict[str, Any]]:
        entry = self.load().get(str(entity_id))
        if entry is None:
            return None
        if not self.layout.is_valid(entry["path"]):
            logger.warning(
                "Ignoring %s index entry %s with invalid path %r",
                self.layout.entity_type,
                entity_id,
                entry["path"],
            )
            return None
        return entry

    def set_entry(self, entity_id: Any, relative: str, verify_on_disk: bool = False) -> Dict[str, Any]:
        key = self.layout.normalize_id(entity_id)
        if not self.layout.is_valid(relative):
            raise InvalidPathError(
                f"Invalid {self.layout.entity_type} path {relative!r}", relative, "set-index"
            )
        if verify_on_disk:
            document = self.layout.document_path(self.data_dir, relative)
            if not file_exists(document):
                raise InvalidPathError(
                    f"No {self.layout.filename} at {relative!r}; not indexing", str(document), "set-index"
                )

        entry = {"path": relative, "lastUpdated": utc_now_iso()}
        with self._lock:
            index = self._load_for_update()
            index[key] = entry
            self.save(index)
        return dict(entry)

    def set_entries(self, entries: Dict[str, str]) -> int:
        """Record several ``id -> path`` pairs in one write; unchanged ones are skipped."""
        with self._lock:
            index = self._load_for_update()
            changed = 0
            for entity_id, relative in entries.items():
                key = self.layout.normalize_id(entity_id)
                if not self.layout.is_valid(relative):
                    raise InvalidPathError(
                        f"Invalid {self.layout.entity_type} path {relative!r}", relative, "set-index"
                    )
                current = index.get(key)
                if current is not None and current.get("path") == relative:
                    continue
                index[key] = {"path": relative, "lastUpdated": utc_now_iso()}
                changed += 1
            if changed:
                self.save(index)
            return changed

    def remove_entry(self, entity_id: Any) -> bool:
        with self._lock:
            index = self._load_for_update()
            if index.pop(str(entity_id), None) is None:
                return False
            self.save(index)
            return True


__all__ = ["DEFAULT_TTL_SECONDS", "EntityIndex", "IndexData"]
