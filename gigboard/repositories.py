"""One place that wires every store over a single data directory."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Dict

from .config import StorageConfig
from .entities import GIG_APPLICATIONS, GIG_REQUESTS, GIGS, NOTIFICATIONS, PROJECTS, TaskStore
from .errors import RequestError
from .notifications import NotificationStore
from .store import EntityStore


class Repositories:
    def __init__(
        self,
        data_dir: Path,
        index_ttl: float = 30.0,
        notification_cap: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.projects = EntityStore(PROJECTS, self.data_dir, index_ttl, clock)
        self.tasks = TaskStore(self.projects)
        self.gigs = EntityStore(GIGS, self.data_dir, index_ttl, clock)
        self.applications = EntityStore(GIG_APPLICATIONS, self.data_dir, index_ttl, clock)
        self.gig_requests = EntityStore(GIG_REQUESTS, self.data_dir, index_ttl, clock)
        self.notifications = NotificationStore(
            NOTIFICATIONS, self.data_dir, index_ttl, clock, retention_cap=notification_cap
        )

    @classmethod
    def from_config(cls, config: StorageConfig) -> "Repositories":
        return cls(config.data_dir, config.index_cache_ttl, config.notification_file_cap)

    def stores(self) -> Dict[str, EntityStore]:
        return {
            store.entity_type: store
            for store in (self.projects, self.gigs, self.applications, self.gig_requests, self.notifications)
        }

    def store(self, entity_type: str) -> EntityStore:
        try:
            return self.stores()[entity_type]
        except KeyError:
            raise RequestError(f"Unknown entity type {entity_type!r}", operation="lookup") from None


__all__ = ["Repositories"]
