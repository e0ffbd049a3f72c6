"""Generic document store shared by every entity type.

A store combines the path scheme, the atomic file primitives, the index and
the resolver into the CRUD surface used by the service layer. Reads prefer
returning ``None`` or an empty list; writes raise.
"""

from __future__ import annotations

import datetime as dt
import logging
import shutil
import time
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import (
    CorruptDocumentError,
    EntityNotFoundError,
    InvalidPathError,
    RequestError,
    StorageError,
    StorageIOError,
)
from .fs_json import ensure_dir, prune_empty_dirs, read_json, remove_file, write_json_atomic, write_text_atomic
from .index import DEFAULT_TTL_SECONDS, EntityIndex
from .paths import LEGACY_MARKER, MARKER_FILES, MIGRATED_MARKER, EntityLayout, parse_timestamp, utc_now_iso
from .resolver import SOURCE_LEGACY, SOURCE_SCAN, PathResolver, Resolution, has_marker


logger = logging.getLogger(__name__)

Document = Dict[str, Any]


def write_migrated_marker(directory: Path, entity_type: str, canonical: str) -> Path:
    marker = directory / MIGRATED_MARKER
    write_text_atomic(
        marker,
        f"This {entity_type} entry has been migrated to hierarchical storage.\n\n"
        f"New location: data/{entity_type}/{canonical}/\n"
        f"Migration date: {utc_now_iso()}\n\n"
        "This directory is read-only history. All writes go to the new location.\n",
    )
    return marker


def write_legacy_marker(directory: Path, entity_type: str, canonical: str) -> Path:
    marker = directory / LEGACY_MARKER
    write_text_atomic(
        marker,
        f"This is a legacy {entity_type} directory.\n\n"
        f"Canonical location: data/{entity_type}/{canonical}/\n"
        f"Marked date: {utc_now_iso()}\n\n"
        "DO NOT WRITE TO THIS DIRECTORY.\n"
        "It is kept only as a read-only copy for manual recovery.\n",
    )
    return marker


def _id_sort_key(entity_id: str) -> Tuple[int, Any]:
    return (0, int(entity_id)) if entity_id.isdigit() else (1, entity_id)


class EntityStore:
    def __init__(
        self,
        layout: EntityLayout,
        data_dir: Path,
        index_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.layout = layout
        self.data_dir = Path(data_dir)
        self.root = layout.root(self.data_dir)
        self.index = EntityIndex(layout, self.data_dir, ttl_seconds=index_ttl, clock=clock)
        self.resolver = PathResolver(layout, self.data_dir, self.index)
        self._lock = RLock()

    @property
    def entity_type(self) -> str:
        return self.layout.entity_type

    # -- helpers ---------------------------------------------------------

    def directory_for(self, relative: str) -> Path:
        return self.root.joinpath(*relative.split("/"))

    def _timestamp_key(self, document: Document) -> dt.datetime:
        try:
            return parse_timestamp(document.get(self.layout.timestamp_field)).replace(tzinfo=None)
        except StorageError:
            return dt.datetime.min

    def _sorted(self, documents: List[Document]) -> List[Document]:
        return sorted(
            documents,
            key=lambda doc: (self._timestamp_key(doc), _id_sort_key(self.layout.entity_id(doc) or "")),
            reverse=True,
        )

    def _remember(self, key: str, relative: str) -> None:
        """Feed a scan result back into the index; a failure only costs speed."""
        try:
            self.index.set_entry(key, relative)
        except StorageError as exc:
            logger.warning("Could not record %s %s in index: %s", self.entity_type, key, exc)

    def _move_sub_resources(self, source: Path, target: Path) -> None:
        for name in self.layout.sub_resources:
            origin = source / name
            if origin.is_dir():
                try:
                    shutil.copytree(origin, target / name, dirs_exist_ok=True)
                except OSError as exc:
                    raise StorageIOError(f"Could not copy {name}: {exc}", str(origin), "copy") from exc

    # -- reads -----------------------------------------------------------

    def resolve(self, entity_id: Any) -> Optional[Resolution]:
        return self.resolver.resolve(entity_id)

    def exists(self, entity_id: Any) -> bool:
        return self.resolve(entity_id) is not None

    def load(self, entity_id: Any) -> Optional[Document]:
        """Like :meth:`read` but lets ``CorruptDocumentError`` and IO errors through."""
        key = str(entity_id)
        resolution = self.resolver.resolve(key)
        if resolution is None:
            return None

        if resolution.source == SOURCE_LEGACY:
            document = read_json(self.resolver.root / key / self.layout.filename)
            return document if isinstance(document, dict) else None

        document = self.resolver.read_document(resolution.path)
        if document is not None and self.layout.entity_id(document) != key:
            logger.error(
                "%s document at %s carries id %r, expected %s",
                self.entity_type,
                resolution.path,
                self.layout.entity_id(document),
                key,
            )
            relative = self.resolver.scan(key)
            if relative is None:
                return None
            resolution = Resolution(relative, SOURCE_SCAN)
            document = self.resolver.read_document(relative)

        if document is not None and resolution.source == SOURCE_SCAN:
            self._remember(key, resolution.path)
        return document

    def read(self, entity_id: Any) -> Optional[Document]:
        if entity_id is None:
            return None
        try:
            return self.load(entity_id)
        except CorruptDocumentError as exc:
            logger.error("Corrupt %s document for id %s: %s", self.entity_type, entity_id, exc)
            return None
        except StorageError as exc:
            logger.warning("Could not read %s %s: %s", self.entity_type, entity_id, exc)
            return None

    def _read_relative(self, key: str, relative: str) -> Optional[Document]:
        try:
            document = self.resolver.read_document(relative)
        except StorageError as exc:
            logger.warning("Skipping unreadable %s %s at %s: %s", self.entity_type, key, relative, exc)
            return None
        if document is None or self.layout.entity_id(document) != key:
            return None
        return document

    def _read_legacy(self, include: Dict[str, Document]) -> None:
        for key, path in self.resolver.iter_legacy(include_marked=True):
            if key in include:
                continue
            try:
                document = read_json(path)
            except StorageError as exc:
                logger.warning("Skipping unreadable legacy %s %s: %s", self.entity_type, key, exc)
                continue
            if isinstance(document, dict):
                include[key] = document

    def scan_all(self) -> Tuple[Dict[str, Document], Dict[str, str]]:
        """Walk the sharded tree; returns ``(documents by id, paths by id)``."""
        documents: Dict[str, Document] = {}
        paths: Dict[str, str] = {}
        for relative, path in self.resolver.iter_hierarchical():
            key = relative.rsplit("/", 1)[-1]
            try:
                document = read_json(path)
            except StorageError as exc:
                logger.warning("Skipping unreadable %s at %s: %s", self.entity_type, relative, exc)
                continue
            if not isinstance(document, dict) or self.layout.entity_id(document) != key:
                logger.warning("Skipping %s at %s: id does not match directory", self.entity_type, relative)
                continue
            documents[key] = document
            paths[key] = relative
        return documents, paths

    def read_all(self, full_scan: bool = False) -> List[Document]:
        """Every live document, newest first by the type's timestamp field."""
        index: Dict[str, Dict[str, Any]] = {}
        if not full_scan:
            try:
                index = self.index.load()
            except StorageError as exc:
                logger.warning("Index for %s unusable, scanning instead: %s", self.entity_type, exc)

        if full_scan or not index:
            documents, paths = self.scan_all()
            if paths:
                try:
                    self.index.set_entries(paths)
                except StorageError as exc:
                    logger.warning("Could not repair %s index: %s", self.entity_type, exc)
        else:
            documents = {}
            for key, entry in index.items():
                relative = entry["path"]
                if not self.layout.is_hierarchical(relative):
                    continue
                document = self._read_relative(key, relative)
                if document is not None:
                    documents[key] = document

        self._read_legacy(documents)
        return self._sorted(list(documents.values()))

    def read_by(self, field: str, value: Any, full_scan: bool = False) -> List[Document]:
        wanted = str(value)
        return [
            document
            for document in self.read_all(full_scan=full_scan)
            if document.get(field) is not None and str(document.get(field)) == wanted
        ]

    def read_by_parent(self, parent_id: Any, full_scan: bool = False) -> List[Document]:
        if not self.layout.parent_field:
            raise RequestError(f"{self.entity_type} has no parent field", operation="read-by-parent")
        return self.read_by(self.layout.parent_field, parent_id, full_scan=full_scan)

    def ids(self) -> List[str]:
        """All ids present on disk, sharded or legacy, without parsing documents."""
        found = {relative.rsplit("/", 1)[-1] for relative, _ in self.resolver.iter_hierarchical()}
        found.update(key for key, _ in self.resolver.iter_legacy(include_marked=True))
        return sorted(found, key=_id_sort_key)

    def next_id(self) -> int:
        numeric = [int(key) for key in self.ids() if key.isdigit()]
        return max(numeric, default=0) + 1

    # -- writes ----------------------------------------------------------

    def save(self, entity: Document) -> Document:
        """Write ``entity`` to its sharded path and index it.

        The document is stamped with the type's timestamp field when that is
        missing, since the path is derived from it.
        """
        document = dict(entity)
        key = self.layout.entity_id(document)
        if key is None:
            raise InvalidPathError(f"{self.entity_type} document has no id", operation="save")
        key = self.layout.normalize_id(key)
        if not document.get(self.layout.timestamp_field):
            document[self.layout.timestamp_field] = utc_now_iso()

        relative = self.layout.derive_path(key, document[self.layout.timestamp_field])
        target = self.layout.document_path(self.data_dir, relative)

        with self._lock:
            previous = self.resolver.resolve(key)
            if has_marker(target.parent):
                raise InvalidPathError("Refusing to write into a marked directory", str(target.parent), "save")

            ensure_dir(target.parent)
            if previous is not None and previous.path != relative:
                old_dir = (
                    self.resolver.root / key if previous.source == SOURCE_LEGACY else self.directory_for(previous.path)
                )
                self._move_sub_resources(old_dir, target.parent)

            write_json_atomic(target, document)
            self.index.set_entry(key, relative)

            if previous is not None and previous.path != relative:
                if previous.source == SOURCE_LEGACY and self.resolver.is_read_only(key):
                    logger.info("Rebuilt %s %s at %s from its read-only legacy copy", self.entity_type, key, relative)
                elif previous.source == SOURCE_LEGACY:
                    write_migrated_marker(self.resolver.root / key, self.entity_type, relative)
                    logger.info("Moved legacy %s %s to %s", self.entity_type, key, relative)
                else:
                    self._remove_tree(previous.path)
                    logger.info("Relocated %s %s from %s to %s", self.entity_type, key, previous.path, relative)

        logger.info("Saved %s %s at %s", self.entity_type, key, relative)
        return document

    def update(self, entity_id: Any, changes: Document) -> Document:
        key = str(entity_id)
        with self._lock:
            current = self.load(key)
            if current is None:
                raise EntityNotFoundError(f"{self.entity_type} {key} not found", key, "update")
            for field in (self.layout.id_field,) + self.layout.id_aliases:
                if field in changes and changes[field] is not None and str(changes[field]) != key:
                    raise InvalidPathError(f"Cannot change {self.entity_type} id {key}", key, "update")
            merged = {**current, **changes}
            if not merged.get(self.layout.timestamp_field):
                merged[self.layout.timestamp_field] = current.get(self.layout.timestamp_field)
            return self.save(merged)

    def _remove_tree(self, relative: str) -> None:
        directory = self.directory_for(relative)
        remove_file(directory / self.layout.filename)
        for name in self.layout.sub_resources:
            shutil.rmtree(directory / name, ignore_errors=True)
        prune_empty_dirs(directory, self.root)

    def _remove_legacy(self, key: str) -> None:
        directory = self.resolver.root / key
        if not directory.is_dir():
            return
        remove_file(directory / self.layout.filename)
        for name in self.layout.sub_resources:
            shutil.rmtree(directory / name, ignore_errors=True)
        for marker in MARKER_FILES:
            remove_file(directory / marker)
        prune_empty_dirs(directory, self.root)

    def delete(self, entity_id: Any) -> bool:
        """Remove the document, its sub-resources and its index entry.

        Any flat legacy copy goes too, marked or not, so the id cannot come
        back through the legacy fallback.
        """
        key = str(entity_id)
        with self._lock:
            resolution = self.resolver.resolve(key)
            self.index.remove_entry(key)
            if resolution is None:
                return False
            if resolution.source != SOURCE_LEGACY:
                self._remove_tree(resolution.path)
            self._remove_legacy(key)
        logger.info("Deleted %s %s", self.entity_type, key)
        return True

    def reindex(self) -> Dict[str, int]:
        """Rebuild the index from a full scan; returns counts of changes."""
        with self._lock:
            self.index.invalidate()
            _, paths = self.scan_all()
            try:
                current = self.index.load()
            except CorruptDocumentError:
                current = {}
            stale = [
                key
                for key, entry in current.items()
                if key not in paths and self.layout.is_hierarchical(entry["path"])
            ]
            rebuilt = {key: dict(entry) for key, entry in current.items() if key not in stale}
            updated = 0
            for key, relative in paths.items():
                if rebuilt.get(key, {}).get("path") != relative:
                    rebuilt[key] = {"path": relative, "lastUpdated": utc_now_iso()}
                    updated += 1
            if updated or stale or not self.index.path.exists():
                self.index.save(rebuilt)
        logger.info("Reindexed %s: %d updated, %d stale removed", self.entity_type, updated, len(stale))
        return {"updated": updated, "removed": len(stale), "total": len(rebuilt)}


__all__ = [
    "Document",
    "EntityStore",
    "write_legacy_marker",
    "write_migrated_marker",
]
