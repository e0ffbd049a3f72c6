"""Move flat legacy storage into the date-sharded layout.

Safe to re-run: already indexed documents are left alone, marked legacy
directories are skipped, and legacy originals are never deleted.
"""

from __future__ import annotations

import datetime as dt
import logging
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from .errors import StorageError
from .fs_json import file_exists, read_json, write_json_atomic
from .paths import LEGACY_MARKER, MIGRATED_MARKER
from .store import EntityStore, write_legacy_marker, write_migrated_marker


logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    entity_type: str
    indexed: int = 0
    migrated: int = 0
    skipped: int = 0
    sub_resources_migrated: int = 0
    markers_written: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["ok"] = self.ok
        return payload


def file_created_at(path: Path) -> str:
    """Creation time of ``path`` (modification time where the OS has none)."""
    stat = path.stat()
    stamp = getattr(stat, "st_birthtime", None) or stat.st_mtime
    return dt.datetime.fromtimestamp(stamp, dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _index_hierarchical(store: EntityStore, report: MigrationReport) -> None:
    found: Dict[str, str] = {}
    for relative, path in store.resolver.iter_hierarchical():
        key = relative.rsplit("/", 1)[-1]
        try:
            document = read_json(path)
        except StorageError as exc:
            report.warnings.append(f"Unreadable {store.entity_type} at {relative}: {exc}")
            continue
        if not isinstance(document, dict) or store.layout.entity_id(document) != key:
            report.warnings.append(f"{store.entity_type} at {relative} does not carry id {key}")
            continue
        found[key] = relative
    report.indexed = store.index.set_entries(found)


def _hierarchical_twin(store: EntityStore, key: str) -> str:
    entry = store.index.get_entry(key)
    if entry and store.layout.is_hierarchical(entry["path"]):
        if file_exists(store.layout.document_path(store.data_dir, entry["path"])):
            return entry["path"]
    return store.resolver.scan(key) or ""


def _migrate_one(store: EntityStore, key: str, legacy_file: Path, report: MigrationReport) -> None:
    layout = store.layout
    directory = legacy_file.parent

    document = read_json(legacy_file)
    if not isinstance(document, dict):
        report.warnings.append(f"Legacy {store.entity_type} {key} is not a JSON object")
        return
    embedded = layout.entity_id(document)
    if embedded is not None and embedded != key:
        report.warnings.append(f"Legacy {store.entity_type} {key} carries id {embedded}; left in place")
        return

    twin = _hierarchical_twin(store, key)
    if twin:
        write_legacy_marker(directory, store.entity_type, twin)
        report.markers_written += 1
        report.skipped += 1
        logger.info("Legacy %s %s already has hierarchical twin %s", store.entity_type, key, twin)
        return

    created_at = document.get(layout.timestamp_field) or file_created_at(legacy_file)
    relative = layout.derive_path(key, created_at)
    target_dir = store.directory_for(relative)

    migrated = dict(document)
    if migrated.get(layout.id_field) is None:
        migrated[layout.id_field] = int(key) if key.isdigit() else key
    migrated[layout.timestamp_field] = created_at
    write_json_atomic(target_dir / layout.filename, migrated)

    for name in layout.sub_resources:
        source = directory / name
        if source.is_dir():
            shutil.copytree(source, target_dir / name, dirs_exist_ok=True)
            report.sub_resources_migrated += 1

    store.index.set_entry(key, relative)
    write_migrated_marker(directory, store.entity_type, relative)
    report.markers_written += 1
    report.migrated += 1
    logger.info("Migrated %s %s to %s", store.entity_type, key, relative)


def migrate_store(store: EntityStore) -> MigrationReport:
    """Index the sharded tree, then move every unmarked legacy entry into it."""
    report = MigrationReport(entity_type=store.entity_type)
    store.index.invalidate()

    try:
        _index_hierarchical(store, report)
    except StorageError as exc:
        report.errors.append(f"Indexing {store.entity_type} failed: {exc}")

    for key, legacy_file in store.resolver.iter_legacy(include_marked=True):
        directory = legacy_file.parent
        if (directory / MIGRATED_MARKER).exists() or (directory / LEGACY_MARKER).exists():
            report.skipped += 1
            continue
        try:
            _migrate_one(store, key, legacy_file, report)
        except (StorageError, OSError) as exc:
            report.errors.append(f"Failed to migrate {store.entity_type} {key}: {exc}")
            logger.error("Failed to migrate %s %s: %s", store.entity_type, key, exc)

    store.index.clear()
    logger.info(
        "Migration of %s: %d indexed, %d migrated, %d skipped, %d sub-resources, "
        "%d markers, %d warnings, %d errors",
        store.entity_type,
        report.indexed,
        report.migrated,
        report.skipped,
        report.sub_resources_migrated,
        report.markers_written,
        len(report.warnings),
        len(report.errors),
    )
    return report


def import_flat_file(store: EntityStore, source: Path) -> MigrationReport:
    """Load a single JSON array of documents (the oldest storage format).

    Documents whose id already resolves are skipped, so re-running is a no-op.
    """
    report = MigrationReport(entity_type=store.entity_type)
    try:
        records = read_json(source, [])
    except StorageError as exc:
        report.errors.append(f"Could not read {source}: {exc}")
        return report
    if not isinstance(records, list):
        report.errors.append(f"{source} does not hold a JSON array")
        return report

    for position, record in enumerate(records):
        if not isinstance(record, dict) or store.layout.entity_id(record) is None:
            report.warnings.append(f"Entry {position} of {source.name} has no id")
            continue
        key = store.layout.entity_id(record)
        if store.exists(key):
            report.skipped += 1
            continue
        try:
            store.save(record)
            report.migrated += 1
        except StorageError as exc:
            report.errors.append(f"Failed to import {store.entity_type} {key}: {exc}")
    store.index.clear()
    return report


def migrate_all(stores: Dict[str, EntityStore]) -> Dict[str, MigrationReport]:
    return {entity_type: migrate_store(store) for entity_type, store in stores.items()}


__all__ = ["MigrationReport", "file_created_at", "import_flat_file", "migrate_all", "migrate_store"]
