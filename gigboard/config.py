"""Storage settings read from the Flask configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping


DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"

DEFAULTS = {
    "DATA_DIR": str(DEFAULT_DATA_DIR),
    "INDEX_CACHE_TTL": 30.0,
    "LOG_LEVEL": "INFO",
    "NOTIFICATION_FILE_CAP": 100,
}


@dataclass(frozen=True)
class StorageConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    index_cache_ttl: float = 30.0
    notification_file_cap: int = 100

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "StorageConfig":
        return cls(
            data_dir=Path(config.get("DATA_DIR") or DEFAULT_DATA_DIR),
            index_cache_ttl=float(config.get("INDEX_CACHE_TTL", DEFAULTS["INDEX_CACHE_TTL"])),
            notification_file_cap=int(config.get("NOTIFICATION_FILE_CAP", DEFAULTS["NOTIFICATION_FILE_CAP"])),
        )


__all__ = ["DEFAULTS", "DEFAULT_DATA_DIR", "StorageConfig"]
