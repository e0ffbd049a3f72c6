"""Entity layouts, record types and the project task sub-store."""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional

from .errors import EntityNotFoundError, InvalidPathError, StorageError
from .fs_json import ensure_dir, file_exists, read_json, remove_file, write_json_atomic
from .paths import SLUG_ID, EntityLayout, utc_now_iso
from .resolver import SOURCE_LEGACY, has_marker
from .store import EntityStore


logger = logging.getLogger(__name__)


PROJECTS = EntityLayout(
    entity_type="projects",
    filename="project.json",
    id_field="projectId",
    id_aliases=("id",),
    timestamp_field="createdAt",
    parent_field="gigId",
    sub_resources=("tasks",),
)
GIGS = EntityLayout(
    entity_type="gigs",
    filename="gig.json",
    id_field="id",
    timestamp_field="postedDate",
    parent_field="commissionerId",
)
GIG_APPLICATIONS = EntityLayout(
    entity_type="gig-applications",
    filename="application.json",
    id_field="id",
    timestamp_field="submittedAt",
    parent_field="gigId",
)
GIG_REQUESTS = EntityLayout(
    entity_type="gig-requests",
    filename="gig-request.json",
    id_field="id",
    timestamp_field="createdAt",
    parent_field="freelancerId",
)
NOTIFICATIONS = EntityLayout(
    entity_type="notifications",
    filename="notification.json",
    id_field="id",
    timestamp_field="timestamp",
    parent_field="targetId",
    id_pattern=SLUG_ID,
)


GIG_AVAILABLE = "Available"
GIG_UNAVAILABLE = "Unavailable"
GIG_CLOSED = "Closed"

APPLICATION_PENDING = "pending"
APPLICATION_ACCEPTED = "accepted"
APPLICATION_REJECTED = "rejected"

REQUEST_PENDING = "pending"
REQUEST_ACCEPTED = "accepted"
REQUEST_REJECTED = "rejected"

PROJECT_PROPOSED = "proposed"
PROJECT_ONGOING = "ongoing"
PROJECT_PAUSED = "paused"
PROJECT_COMPLETED = "completed"
PROJECT_ARCHIVED = "archived"
ACTIVE_PROJECT_STATUSES = frozenset({PROJECT_ONGOING, PROJECT_PAUSED})

TASK_ONGOING = "Ongoing"


def normalize_status(value: Any) -> str:
    return str(value or "").strip().lower()


def same_id(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


class _Record:
    """Typed view over a loosely-typed JSON document.

    ``_KEYS`` maps attribute names to JSON keys; every other key is carried
    untouched in ``extra``.
    """

    _KEYS: ClassVar[Dict[str, str]] = {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = set(cls._KEYS.values())
        values = {attr: data[key] for attr, key in cls._KEYS.items() if key in data}
        extra = {key: value for key, value in data.items() if key not in known}
        return cls(extra=extra, **values)

    def to_dict(self) -> Dict[str, Any]:
        document = dict(self.extra)
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                document[key] = value
        return document


@dataclass
class Project(_Record):
    project_id: Any
    title: str = ""
    status: str = PROJECT_ONGOING
    gig_id: Any = None
    freelancer_id: Any = None
    commissioner_id: Any = None
    created_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[Dict[str, str]] = {
        "project_id": "projectId",
        "title": "title",
        "status": "status",
        "gig_id": "gigId",
        "freelancer_id": "freelancerId",
        "commissioner_id": "commissionerId",
        "created_at": "createdAt",
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        if "projectId" not in data and "id" in data:
            data = {**data, "projectId": data["id"]}
        return super().from_dict(data)

    @property
    def is_active(self) -> bool:
        return normalize_status(self.status) in ACTIVE_PROJECT_STATUSES


@dataclass
class Gig(_Record):
    id: Any
    title: str = ""
    status: str = GIG_AVAILABLE
    commissioner_id: Any = None
    posted_date: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[Dict[str, str]] = {
        "id": "id",
        "title": "title",
        "status": "status",
        "commissioner_id": "commissionerId",
        "posted_date": "postedDate",
    }

    @property
    def is_available(self) -> bool:
        return normalize_status(self.status) == normalize_status(GIG_AVAILABLE)

    @property
    def is_unavailable(self) -> bool:
        return normalize_status(self.status) == normalize_status(GIG_UNAVAILABLE)


@dataclass
class GigApplication(_Record):
    id: Any
    gig_id: Any = None
    freelancer_id: Any = None
    status: str = APPLICATION_PENDING
    submitted_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[Dict[str, str]] = {
        "id": "id",
        "gig_id": "gigId",
        "freelancer_id": "freelancerId",
        "status": "status",
        "submitted_at": "submittedAt",
    }


@dataclass
class GigRequest(_Record):
    id: Any
    freelancer_id: Any = None
    commissioner_id: Any = None
    title: str = ""
    status: str = REQUEST_PENDING
    gig_id: Any = None
    created_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[Dict[str, str]] = {
        "id": "id",
        "freelancer_id": "freelancerId",
        "commissioner_id": "commissionerId",
        "title": "title",
        "status": "status",
        "gig_id": "gigId",
        "created_at": "createdAt",
    }


@dataclass
class Task(_Record):
    task_id: Any
    project_id: Any
    title: str = ""
    status: str = TASK_ONGOING
    order: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[Dict[str, str]] = {
        "task_id": "taskId",
        "project_id": "projectId",
        "title": "title",
        "status": "status",
        "order": "order",
    }


_TASK_FILE = re.compile(r"^(\d+)\.json$")


class TaskStore:
    """Tasks live beside their project: ``<project dir>/tasks/<taskId>.json``."""

    SUBDIR = "tasks"

    def __init__(self, projects: EntityStore) -> None:
        self.projects = projects

    def tasks_dir(self, project_id: Any) -> Optional[Path]:
        resolution = self.projects.resolve(project_id)
        if resolution is None:
            return None
        if resolution.source == SOURCE_LEGACY:
            return self.projects.root / str(project_id) / self.SUBDIR
        return self.projects.directory_for(resolution.path) / self.SUBDIR

    @staticmethod
    def _check_writable(directory: Path, operation: str) -> None:
        if has_marker(directory.parent):
            raise InvalidPathError("Refusing to write into a marked directory", str(directory.parent), operation)

    def save(self, task: Dict[str, Any]) -> Dict[str, Any]:
        if task.get("taskId") is None or task.get("projectId") is None:
            raise InvalidPathError("Task needs both taskId and projectId", operation="save-task")
        record = Task.from_dict(task)
        task_id = str(record.task_id)
        if not task_id.isdigit():
            raise InvalidPathError(f"Invalid task id {record.task_id!r}", operation="save-task")

        directory = self.tasks_dir(record.project_id)
        if directory is None:
            raise EntityNotFoundError(
                f"Project {record.project_id} not found for task {task_id}", operation="save-task"
            )
        self._check_writable(directory, "save-task")

        document = {**record.to_dict(), "lastModified": utc_now_iso()}
        ensure_dir(directory)
        write_json_atomic(directory / f"{task_id}.json", document)
        return document

    def read(self, project_id: Any, task_id: Any) -> Optional[Dict[str, Any]]:
        directory = self.tasks_dir(project_id)
        if directory is None:
            return None
        try:
            document = read_json(directory / f"{task_id}.json")
        except StorageError as exc:
            logger.warning("Could not read task %s of project %s: %s", task_id, project_id, exc)
            return None
        return document if isinstance(document, dict) else None

    def _read_dir(self, directory: Path) -> List[Dict[str, Any]]:
        tasks: List[Dict[str, Any]] = []
        if not directory.is_dir():
            return tasks
        for path in sorted(directory.iterdir()):
            if not _TASK_FILE.match(path.name):
                continue
            try:
                document = read_json(path)
            except StorageError as exc:
                logger.warning("Skipping unreadable task file %s: %s", path, exc)
                continue
            if isinstance(document, dict):
                tasks.append(document)
        return sorted(tasks, key=lambda task: (task.get("order") or 0, int(task.get("taskId") or 0)))

    def read_by_parent(self, project_id: Any) -> List[Dict[str, Any]]:
        directory = self.tasks_dir(project_id)
        return self._read_dir(directory) if directory is not None else []

    def read_all(self) -> List[Dict[str, Any]]:
        tasks: List[Dict[str, Any]] = []
        sharded = set()
        for relative, _ in self.projects.resolver.iter_hierarchical():
            sharded.add(relative.rsplit("/", 1)[-1])
            tasks.extend(self._read_dir(self.projects.directory_for(relative) / self.SUBDIR))
        for key, _ in self.projects.resolver.iter_legacy(include_marked=True):
            if key in sharded:
                continue
            tasks.extend(self._read_dir(self.projects.root / key / self.SUBDIR))
        return tasks

    def next_id(self) -> int:
        ids = [int(task["taskId"]) for task in self.read_all() if str(task.get("taskId", "")).isdigit()]
        return max(ids, default=0) + 1

    def delete(self, project_id: Any, task_id: Any) -> bool:
        directory = self.tasks_dir(project_id)
        if directory is None:
            return False
        self._check_writable(directory, "delete-task")
        return remove_file(directory / f"{task_id}.json")

    def delete_for_project(self, project_id: Any) -> int:
        directory = self.tasks_dir(project_id)
        if directory is None or not directory.is_dir():
            return 0
        self._check_writable(directory, "delete-tasks")
        count = sum(1 for path in directory.iterdir() if _TASK_FILE.match(path.name) and file_exists(path))
        shutil.rmtree(directory, ignore_errors=True)
        logger.info("Deleted %d tasks of project %s", count, project_id)
        return count


__all__ = [
    "ACTIVE_PROJECT_STATUSES",
    "APPLICATION_ACCEPTED",
    "APPLICATION_PENDING",
    "APPLICATION_REJECTED",
    "GIGS",
    "GIG_APPLICATIONS",
    "GIG_AVAILABLE",
    "GIG_CLOSED",
    "GIG_REQUESTS",
    "GIG_UNAVAILABLE",
    "Gig",
    "GigApplication",
    "GigRequest",
    "NOTIFICATIONS",
    "PROJECTS",
    "PROJECT_ARCHIVED",
    "PROJECT_COMPLETED",
    "PROJECT_ONGOING",
    "PROJECT_PAUSED",
    "PROJECT_PROPOSED",
    "Project",
    "REQUEST_ACCEPTED",
    "REQUEST_PENDING",
    "REQUEST_REJECTED",
    "TASK_ONGOING",
    "Task",
    "TaskStore",
    "normalize_status",
    "same_id",
]
