"""Date-sharded path scheme and the validators that guard the index.

Every entity type lives under ``<data dir>/<entity type>/``. Current
documents are sharded as ``YYYY/MM/DD/<id>/<file>``; documents written before
the sharding was introduced sit directly under ``<id>/<file>`` and are called
legacy documents.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Pattern, Tuple, Union

from .errors import InvalidPathError


NUMERIC_ID = r"\d+"
SLUG_ID = r"[A-Za-z0-9][A-Za-z0-9_.-]*"

MIGRATED_MARKER = "_migrated.README"
LEGACY_MARKER = "_legacy.DO_NOT_WRITE"
MARKER_FILES = (MIGRATED_MARKER, LEGACY_MARKER)

Timestamp = Union[str, dt.datetime, dt.date]


@lru_cache(maxsize=None)
def _hierarchical_re(id_pattern: str) -> Pattern[str]:
    return re.compile(rf"^(\d{{4}})/(\d{{2}})/(\d{{2}})/({id_pattern})$")


@lru_cache(maxsize=None)
def _legacy_re(id_pattern: str) -> Pattern[str]:
    return re.compile(rf"^({id_pattern})$")


def _is_calendar_day(year: str, month: str, day: str) -> bool:
    try:
        dt.date(int(year), int(month), int(day))
    except ValueError:
        return False
    return True


def split_hierarchical_path(value: str, id_pattern: str = NUMERIC_ID) -> Optional[Tuple[str, str, str, str]]:
    """Return ``(year, month, day, id)`` for a well-formed hierarchical path."""
    if not isinstance(value, str):
        return None
    match = _hierarchical_re(id_pattern).match(value)
    if not match:
        return None
    year, month, day, entity_id = match.groups()
    if not _is_calendar_day(year, month, day):
        return None
    return year, month, day, entity_id


def is_hierarchical_path(value: str, id_pattern: str = NUMERIC_ID) -> bool:
    return split_hierarchical_path(value, id_pattern) is not None


def is_legacy_path(value: str, id_pattern: str = NUMERIC_ID) -> bool:
    return isinstance(value, str) and bool(_legacy_re(id_pattern).match(value))


def parse_timestamp(value: Timestamp) -> dt.datetime:
    """Parse an ISO-8601 timestamp; aware values are normalised to UTC."""
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, dt.date):
        parsed = dt.datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidPathError(f"Unparseable timestamp {value!r}", operation="derive") from exc
    else:
        raise InvalidPathError(f"Missing timestamp {value!r}", operation="derive")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.timezone.utc)
    return parsed


def derive_path(entity_id: Any, created_at: Timestamp, id_pattern: str = NUMERIC_ID) -> str:
    """Map an id and its creation timestamp to ``YYYY/MM/DD/<id>``.

    Pure and stable: the result is stored in the index, so the same inputs
    must always produce the same path.
    """
    key = str(entity_id)
    if not is_legacy_path(key, id_pattern):
        raise InvalidPathError(f"Invalid entity id {entity_id!r}", operation="derive")
    moment = parse_timestamp(created_at)
    return f"{moment.year:04d}/{moment.month:02d}/{moment.day:02d}/{key}"


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class EntityLayout:
    """Where and how one entity type is stored."""

    entity_type: str
    filename: str
    id_field: str
    timestamp_field: str
    parent_field: Optional[str] = None
    id_aliases: Tuple[str, ...] = ()
    id_pattern: str = NUMERIC_ID
    sub_resources: Tuple[str, ...] = ()

    @property
    def index_filename(self) -> str:
        return f"{self.entity_type}-index.json"

    def root(self, data_dir: Path) -> Path:
        return data_dir / self.entity_type

    def index_path(self, data_dir: Path) -> Path:
        return self.root(data_dir) / self.index_filename

    def document_path(self, data_dir: Path, relative: str) -> Path:
        return self.root(data_dir).joinpath(*relative.split("/")) / self.filename

    def normalize_id(self, entity_id: Any) -> str:
        key = str(entity_id).strip() if entity_id is not None else ""
        if not is_legacy_path(key, self.id_pattern):
            raise InvalidPathError(f"Invalid {self.entity_type} id {entity_id!r}", operation="validate")
        return key

    def entity_id(self, document: Dict[str, Any]) -> Optional[str]:
        for field in (self.id_field,) + self.id_aliases:
            value = document.get(field)
            if value is not None and value != "":
                return str(value)
        return None

    def derive_path(self, entity_id: Any, created_at: Timestamp) -> str:
        return derive_path(entity_id, created_at, self.id_pattern)

    def is_hierarchical(self, relative: str) -> bool:
        return is_hierarchical_path(relative, self.id_pattern)

    def is_legacy(self, relative: str) -> bool:
        return is_legacy_path(relative, self.id_pattern)

    def is_valid(self, relative: str) -> bool:
        return self.is_hierarchical(relative) or self.is_legacy(relative)


__all__ = [
    "EntityLayout",
    "LEGACY_MARKER",
    "MARKER_FILES",
    "MIGRATED_MARKER",
    "NUMERIC_ID",
    "SLUG_ID",
    "derive_path",
    "is_hierarchical_path",
    "is_legacy_path",
    "parse_timestamp",
    "split_hierarchical_path",
    "utc_now_iso",
]
