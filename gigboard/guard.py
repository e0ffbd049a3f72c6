"""Guarded project creation.

There is no transaction across documents, so creating a project is run as a
small saga: write the project and its tasks, read them back, and only then
flip the gig, application and request statuses. Any failure runs the
compensating steps recorded on the :class:`GuardContext`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from .entities import (
    APPLICATION_ACCEPTED,
    GIG_UNAVAILABLE,
    REQUEST_ACCEPTED,
    Project,
    normalize_status,
    same_id,
)
from .errors import GuardViolationError, RollbackFailureError
from .paths import utc_now_iso
from .repositories import Repositories
from .store import Document


logger = logging.getLogger(__name__)


class CreationState(str, enum.Enum):
    PENDING = "pending"
    CREATED = "created"
    VERIFIED = "verified"
    COMMITTED = "committed"
    VERIFY_FAILED = "verify-failed"
    ROLLED_BACK = "rolled-back"
    ROLLBACK_FAILED = "rollback-failed"


@dataclass
class GuardContext:
    """Who is being matched to what, plus everything needed to undo it."""

    gig_id: Any = None
    freelancer_id: Any = None
    commissioner_id: Any = None
    application_id: Any = None
    request_id: Any = None
    project_id: Any = None
    title: str = ""
    acting_user_id: Any = None
    project_created: bool = False
    created_task_ids: List[Any] = field(default_factory=list)
    # entity kind -> document as it was before the guard changed it; cleared once restored
    previous_documents: Dict[str, Document] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GuardResult:
    check: str
    passed: bool
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GuardOutcome:
    context: GuardContext
    state: CreationState = CreationState.PENDING
    checks: List[GuardResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    project: Optional[Document] = None

    @property
    def success(self) -> bool:
        return self.state == CreationState.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "success": self.success,
            "checks": [check.to_dict() for check in self.checks],
            "errors": list(self.errors),
            "context": self.context.to_dict(),
        }


class ProjectCreationGuard:
    """Creates a project and its tasks so that callers see all of it or none of it."""

    # one creation at a time per process; the duplicate check relies on it
    _lock = RLock()

    def __init__(self, repos: Repositories, notifier: Optional[Callable[[Document], Any]] = None) -> None:
        self.repos = repos
        self.notifier = notifier if notifier is not None else repos.notifications.add_event

    # -- saga ------------------------------------------------------------

    def create(self, project: Document, tasks: List[Document], context: GuardContext) -> GuardOutcome:
        outcome = GuardOutcome(context=context)
        with self._lock:
            try:
                self._write(project, tasks, context, outcome)
                outcome.checks.extend(self.verify(context, expected_tasks=len(tasks)))
                self._transition(outcome, CreationState.VERIFIED)
                outcome.checks.extend(self.enforce_consistency(context))
                self._transition(outcome, CreationState.COMMITTED)
            except Exception as exc:
                if isinstance(exc, GuardViolationError) and exc.outcome is not None:
                    outcome.checks.extend(exc.outcome.checks)
                self._fail(outcome, exc)

        outcome.project = self.repos.projects.read(context.project_id)
        self._notify(context)
        return outcome

    def _transition(self, outcome: GuardOutcome, state: CreationState) -> None:
        logger.info(
            "Project %s creation for gig %s: %s -> %s",
            outcome.context.project_id,
            outcome.context.gig_id,
            outcome.state.value,
            state.value,
        )
        outcome.state = state

    def _fail(self, outcome: GuardOutcome, exc: Exception) -> None:
        context = outcome.context
        outcome.errors.append(str(exc))
        if outcome.state in (CreationState.PENDING, CreationState.CREATED):
            self._transition(outcome, CreationState.VERIFY_FAILED)
        logger.error("Guarded creation of project %s failed: %s", context.project_id, exc)

        problems = self.rollback(context)
        if problems:
            outcome.errors.extend(problems)
            self._transition(outcome, CreationState.ROLLBACK_FAILED)
            logger.critical(
                "Rollback of project %s left the store inconsistent: %s", context.project_id, "; ".join(problems)
            )
            raise RollbackFailureError(f"Rollback of project {context.project_id} failed", outcome) from exc

        self._transition(outcome, CreationState.ROLLED_BACK)
        raise GuardViolationError(str(exc), outcome) from exc

    def _write(self, project: Document, tasks: List[Document], context: GuardContext, outcome: GuardOutcome) -> None:
        record = Project.from_dict(project)
        context.project_id = record.project_id
        if self.repos.projects.exists(record.project_id):
            raise GuardViolationError(f"Project {record.project_id} already exists")

        # flagged first so a save that fails half way is still cleaned up
        context.project_created = True
        self.repos.projects.save(record.to_dict())

        for task in tasks:
            saved = self.repos.tasks.save({**task, "projectId": record.project_id})
            context.created_task_ids.append(saved["taskId"])
        self._transition(outcome, CreationState.CREATED)

    def verify(self, context: GuardContext, expected_tasks: int) -> List[GuardResult]:
        """Read the project and its tasks back from disk."""
        checks = []
        stored = self.repos.projects.read(context.project_id)
        checks.append(
            GuardResult(
                "project-persisted",
                stored is not None,
                f"project {context.project_id} " + ("read back" if stored is not None else "missing"),
            )
        )
        found = len(self.repos.tasks.read_by_parent(context.project_id)) if stored is not None else 0
        checks.append(
            GuardResult("tasks-persisted", found == expected_tasks, f"{found} of {expected_tasks} tasks read back")
        )
        failed = [check for check in checks if not check.passed]
        if failed:
            outcome = GuardOutcome(context=context, state=CreationState.VERIFY_FAILED, checks=checks)
            raise GuardViolationError(
                f"Verification of project {context.project_id} failed: " + ", ".join(c.message for c in failed),
                outcome,
            )
        return checks

    # -- consistency -----------------------------------------------------

    def _active_duplicates(self, context: GuardContext) -> List[Document]:
        duplicates = []
        for document in self.repos.projects.read_all():
            project = Project.from_dict(document)
            if same_id(project.project_id, context.project_id) or not project.is_active:
                continue
            if context.gig_id is not None and same_id(project.gig_id, context.gig_id):
                duplicates.append(document)
            elif (
                context.request_id is not None
                and same_id(project.freelancer_id, context.freelancer_id)
                and same_id(project.commissioner_id, context.commissioner_id)
                and project.title.strip() == context.title.strip()
            ):
                duplicates.append(document)
        return duplicates

    def _flip(
        self, context: GuardContext, kind: str, store: Any, entity_id: Any, status: str, extra: Dict[str, Any]
    ) -> GuardResult:
        current = store.load(entity_id)
        if current is None:
            raise GuardViolationError(f"{kind} {entity_id} disappeared during project creation")
        if normalize_status(current.get("status")) == normalize_status(status):
            return GuardResult(f"{kind}-status", True, f"{kind} {entity_id} already {status}")
        context.previous_documents[kind] = dict(current)
        store.update(entity_id, {"status": status, **extra})
        return GuardResult(f"{kind}-status", True, f"{kind} {entity_id} set to {status}")

    def enforce_consistency(self, context: GuardContext) -> List[GuardResult]:
        """Flip gig, application and request to match the new project.

        Previous statuses are recorded on ``context`` before each write so
        :meth:`rollback` can restore them.
        """
        checks = []
        duplicates = self._active_duplicates(context)
        if duplicates:
            ids = [Project.from_dict(doc).project_id for doc in duplicates]
            check = GuardResult("single-active-project", False, f"active projects {ids} already cover this match")
            raise GuardViolationError(
                check.message,
                GuardOutcome(context=context, state=CreationState.VERIFIED, checks=[check]),
            )
        checks.append(GuardResult("single-active-project", True))

        now = utc_now_iso()
        if context.gig_id is not None:
            checks.append(
                self._flip(context, "gig", self.repos.gigs, context.gig_id, GIG_UNAVAILABLE, {"lastModified": now})
            )
        if context.application_id is not None:
            checks.append(
                self._flip(
                    context,
                    "application",
                    self.repos.applications,
                    context.application_id,
                    APPLICATION_ACCEPTED,
                    {"projectId": context.project_id, "acceptedAt": now},
                )
            )
        if context.request_id is not None:
            checks.append(
                self._flip(
                    context,
                    "request",
                    self.repos.gig_requests,
                    context.request_id,
                    REQUEST_ACCEPTED,
                    {"projectId": context.project_id, "acceptedAt": now},
                )
            )
        return checks

    # -- compensation ----------------------------------------------------

    def rollback(self, context: GuardContext) -> List[str]:
        """Undo whatever ``context`` says was done. Safe to call repeatedly.

        Returns the steps that could not be completed.
        """
        problems = []
        stores = {
            "gig": (self.repos.gigs, context.gig_id),
            "application": (self.repos.applications, context.application_id),
            "request": (self.repos.gig_requests, context.request_id),
        }
        for kind in ("request", "application", "gig"):
            if kind not in context.previous_documents:
                continue
            store, entity_id = stores[kind]
            try:
                store.save(context.previous_documents[kind])
            except Exception as exc:
                problems.append(f"restore {kind} {entity_id}: {exc}")
                continue
            del context.previous_documents[kind]
            logger.info("Restored %s %s during rollback", kind, entity_id)

        if context.project_created:
            try:
                self.repos.tasks.delete_for_project(context.project_id)
                self.repos.projects.delete(context.project_id)
            except Exception as exc:
                problems.append(f"delete project {context.project_id}: {exc}")
            else:
                context.project_created = False
                context.created_task_ids.clear()
                logger.info("Removed project %s during rollback", context.project_id)
        return problems

    def _notify(self, context: GuardContext) -> None:
        event = {
            "type": "gig_request_accepted" if context.request_id is not None else "project_created",
            "targetId": context.freelancer_id,
            "actorId": context.acting_user_id if context.acting_user_id is not None else context.commissioner_id,
            "projectId": context.project_id,
            "gigId": context.gig_id,
            "title": context.title,
        }
        try:
            self.notifier(event)
        except Exception as exc:
            logger.warning("Could not deliver notification for project %s: %s", context.project_id, exc)


__all__ = [
    "CreationState",
    "GuardContext",
    "GuardOutcome",
    "GuardResult",
    "ProjectCreationGuard",
]
