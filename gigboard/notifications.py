"""Notification events stored one document per event, plus per-user flags."""

from __future__ import annotations

import datetime as dt
import logging
import re
import uuid
from collections import Counter
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from .errors import StorageError
from .fs_json import read_json, write_json_atomic
from .paths import parse_timestamp, utc_now_iso
from .store import Document, EntityStore


logger = logging.getLogger(__name__)

USER_FREELANCER = "freelancer"
USER_COMMISSIONER = "commissioner"

DEFAULT_LOOKBACK_DAYS = 90


class NotificationStore(EntityStore):
    """Entity store for notification events.

    Read and actioned flags are kept outside the event documents, keyed by
    event id and user id, so marking an event never rewrites the event.
    """

    def __init__(self, *args: Any, retention_cap: int = 100, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.retention_cap = retention_cap
        self._flags_lock = Lock()

    @property
    def read_states_path(self) -> Path:
        return self.root / "read-states.json"

    @property
    def actioned_states_path(self) -> Path:
        return self.root / "actioned-states.json"

    def add_event(self, event: Document) -> Document:
        document = dict(event)
        document.setdefault("timestamp", utc_now_iso())
        if not document.get("id"):
            kind = re.sub(r"[^A-Za-z0-9_.-]", "_", str(document.get("type") or "event"))
            document["id"] = f"{kind}_{uuid.uuid4().hex[:12]}"
        saved = self.save(document)
        self._enforce_cap(saved)
        return saved

    def _enforce_cap(self, event: Document) -> None:
        """Keep at most ``retention_cap`` events of one type per day."""
        if self.retention_cap <= 0:
            return
        day = str(event.get("timestamp", ""))[:10]
        kind = event.get("type")
        same_bucket = [
            other
            for other in self.read_all()
            if other.get("type") == kind and str(other.get("timestamp", ""))[:10] == day
        ]
        for stale in same_bucket[self.retention_cap:]:
            self.delete(stale["id"])

    def events_for_user(
        self,
        user_id: Any,
        user_type: str = USER_FREELANCER,
        start: Optional[dt.datetime] = None,
        end: Optional[dt.datetime] = None,
        limit: int = 100,
    ) -> List[Document]:
        """Events relevant to a user, newest first.

        Freelancers see events that target them; commissioners also see the
        events they acted on.
        """
        now = dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
        start = start or (now - dt.timedelta(days=DEFAULT_LOOKBACK_DAYS))
        end = end or now
        wanted = str(user_id)

        results = []
        for event in self.read_all():
            try:
                moment = parse_timestamp(event.get("timestamp")).replace(tzinfo=None)
            except StorageError:
                continue
            if moment < start or moment > end:
                continue
            target = str(event.get("targetId"))
            actor = str(event.get("actorId"))
            if user_type == USER_COMMISSIONER:
                relevant = target == wanted or actor == wanted
            else:
                relevant = target == wanted
            if relevant:
                results.append(event)
        return results[:limit]

    # -- flags -----------------------------------------------------------

    def _load_flags(self, path: Path) -> Dict[str, Dict[str, Any]]:
        try:
            flags = read_json(path, {})
        except StorageError as exc:
            logger.warning("Resetting unreadable flag file %s: %s", path, exc)
            return {}
        return flags if isinstance(flags, dict) else {}

    def mark_read(self, notification_id: str, user_id: Any) -> None:
        with self._flags_lock:
            states = self._load_flags(self.read_states_path)
            states.setdefault(str(notification_id), {})[str(user_id)] = utc_now_iso()
            write_json_atomic(self.read_states_path, states)

    def is_read(self, notification_id: str, user_id: Any) -> bool:
        states = self._load_flags(self.read_states_path)
        return str(user_id) in states.get(str(notification_id), {})

    def mark_actioned(self, notification_id: str, user_id: Any, action: str) -> None:
        with self._flags_lock:
            states = self._load_flags(self.actioned_states_path)
            states.setdefault(str(notification_id), {})[str(user_id)] = action
            write_json_atomic(self.actioned_states_path, states)

    def actioned(self, notification_id: str, user_id: Any) -> Optional[str]:
        states = self._load_flags(self.actioned_states_path)
        return states.get(str(notification_id), {}).get(str(user_id))

    def stats(self) -> Dict[str, Any]:
        events = self.read_all()
        by_type = Counter(str(event.get("type")) for event in events)
        return {"total_events": len(events), "by_type": dict(by_type), "index": self.index.stats()}


__all__ = ["NotificationStore", "USER_COMMISSIONER", "USER_FREELANCER"]
