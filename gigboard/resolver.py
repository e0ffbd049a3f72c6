"""Canonical path resolution: index, then hierarchical scan, then legacy.

The resolver never writes. Callers that get a ``scan`` result are expected
to record it in the index so the next lookup is served from there.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Pattern, Tuple

from .errors import StorageError
from .fs_json import file_exists, read_json
from .index import EntityIndex
from .paths import MARKER_FILES, EntityLayout


logger = logging.getLogger(__name__)

SOURCE_INDEX = "index"
SOURCE_SCAN = "scan"
SOURCE_LEGACY = "legacy-fallback"

_YEAR = re.compile(r"^\d{4}$")
_TWO_DIGITS = re.compile(r"^\d{2}$")


class Resolution(NamedTuple):
    path: str
    source: str


def _subdirs(path: Path, pattern: Pattern[str]) -> List[str]:
    try:
        entries = sorted(os.listdir(path))
    except OSError as exc:
        logger.warning("Skipping unreadable directory %s: %s", path, exc)
        return []
    return [name for name in entries if pattern.match(name) and (path / name).is_dir()]


def has_marker(directory: Path) -> bool:
    return any((directory / marker).exists() for marker in MARKER_FILES)


class PathResolver:
    def __init__(self, layout: EntityLayout, data_dir: Path, index: EntityIndex) -> None:
        self.layout = layout
        self.data_dir = data_dir
        self.root = layout.root(data_dir)
        self.index = index
        self._id_re = re.compile(rf"^{layout.id_pattern}$")

    def resolve(self, entity_id: Any) -> Optional[Resolution]:
        key = str(entity_id)
        if not self._id_re.match(key):
            return None

        relative = self._from_index(key)
        if relative is not None:
            logger.debug("Resolved %s %s from index", self.layout.entity_type, key)
            return Resolution(relative, SOURCE_INDEX)

        relative = self.scan(key)
        if relative is not None:
            logger.debug("Resolved %s %s by scan", self.layout.entity_type, key)
            return Resolution(relative, SOURCE_SCAN)

        if self.legacy_document(key) is not None:
            logger.debug("Resolved %s %s from legacy storage", self.layout.entity_type, key)
            return Resolution(key, SOURCE_LEGACY)

        return None

    def _from_index(self, key: str) -> Optional[str]:
        try:
            entry = self.index.get_entry(key)
        except StorageError as exc:
            logger.warning("Index for %s unusable, falling back to scan: %s", self.layout.entity_type, exc)
            return None
        if entry is None:
            return None

        relative = entry["path"]
        if not self.layout.is_hierarchical(relative):
            return None
        if file_exists(self.layout.document_path(self.data_dir, relative)):
            return relative

        logger.warning(
            "Stale %s index entry %s -> %s; document is missing",
            self.layout.entity_type,
            key,
            relative,
        )
        return None

    def _document_matches(self, document_path: Path, key: str) -> bool:
        try:
            document = read_json(document_path)
        except StorageError as exc:
            logger.warning("Skipping unreadable candidate %s: %s", document_path, exc)
            return False
        if not isinstance(document, dict):
            return False
        return self.layout.entity_id(document) == key

    def scan(self, key: str) -> Optional[str]:
        """Walk ``YYYY/MM/DD`` looking for ``<key>/<file>`` whose id matches."""
        for year, month, day in self.iter_days():
            candidate = self.root / year / month / day / key / self.layout.filename
            if file_exists(candidate) and self._document_matches(candidate, key):
                return f"{year}/{month}/{day}/{key}"
        return None

    def iter_days(self) -> Iterator[Tuple[str, str, str]]:
        if not self.root.is_dir():
            return
        for year in _subdirs(self.root, _YEAR):
            year_dir = self.root / year
            for month in _subdirs(year_dir, _TWO_DIGITS):
                month_dir = year_dir / month
                for day in _subdirs(month_dir, _TWO_DIGITS):
                    yield year, month, day

    def iter_hierarchical(self) -> Iterator[Tuple[str, Path]]:
        """Yield ``(relative path, document path)`` for every sharded document."""
        for year, month, day in self.iter_days():
            day_dir = self.root / year / month / day
            for entity_dir in _subdirs(day_dir, self._id_re):
                document = day_dir / entity_dir / self.layout.filename
                if file_exists(document):
                    yield f"{year}/{month}/{day}/{entity_dir}", document

    def legacy_document(self, key: str) -> Optional[Path]:
        """Return the flat legacy document for ``key``, marked or not.

        Markers forbid writes only. A marked copy is reached solely when its
        hierarchical twin is missing, and then serves as a read-only fallback.
        """
        if not self._id_re.match(key):
            return None
        document = self.root / key / self.layout.filename
        return document if file_exists(document) else None

    def is_read_only(self, key: str) -> bool:
        """True when the legacy directory for ``key`` carries a marker."""
        return has_marker(self.root / key)

    def iter_legacy(self, include_marked: bool = False) -> Iterator[Tuple[str, Path]]:
        """Yield ``(id, document path)`` for flat legacy documents."""
        if not self.root.is_dir():
            return
        for name in _subdirs(self.root, self._id_re):
            directory = self.root / name
            document = directory / self.layout.filename
            if not file_exists(document):
                continue
            if not include_marked and has_marker(directory):
                continue
            yield name, document

    def read_document(self, relative: str) -> Optional[Dict[str, Any]]:
        """Load a resolved document, ``None`` if it vanished or is not an object."""
        document = read_json(self.layout.document_path(self.data_dir, relative))
        return document if isinstance(document, dict) else None


__all__ = [
    "PathResolver",
    "Resolution",
    "SOURCE_INDEX",
    "SOURCE_LEGACY",
    "SOURCE_SCAN",
    "has_marker",
]
