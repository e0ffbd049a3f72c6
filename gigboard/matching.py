"""Service functions that turn a gig match or a gig request into a project."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .entities import (
    APPLICATION_ACCEPTED,
    APPLICATION_PENDING,
    APPLICATION_REJECTED,
    GIG_AVAILABLE,
    GIG_CLOSED,
    PROJECT_ARCHIVED,
    PROJECT_ONGOING,
    REQUEST_PENDING,
    TASK_ONGOING,
    Gig,
    GigApplication,
    GigRequest,
    Project,
    normalize_status,
    same_id,
)
from .errors import EntityNotFoundError, GuardViolationError
from .guard import GuardContext, ProjectCreationGuard
from .paths import utc_now_iso
from .repositories import Repositories
from .store import Document


logger = logging.getLogger(__name__)

DEFAULT_TASK_TITLE = "Initial setup"


def _require(document: Optional[Document], kind: str, entity_id: Any) -> Document:
    if document is None:
        raise EntityNotFoundError(f"{kind} {entity_id} was not found", operation="match")
    return document


def _active_projects_for_gig(repos: Repositories, gig_id: Any) -> List[Project]:
    return [
        project
        for project in (Project.from_dict(doc) for doc in repos.projects.read_by_parent(gig_id))
        if project.is_active
    ]


def _check_gig_open(repos: Repositories, gig: Gig) -> None:
    if not gig.is_available:
        raise GuardViolationError(f"Gig {gig.id} is {gig.status}, not {GIG_AVAILABLE}")
    if not (gig.title or "").strip():
        raise GuardViolationError(f"Gig {gig.id} has no title")
    active = _active_projects_for_gig(repos, gig.id)
    if active:
        raise GuardViolationError(f"Gig {gig.id} already has active project {active[0].project_id}")


def build_tasks(milestones: List[Any], project_id: int, first_task_id: int) -> List[Document]:
    """One task per milestone, or a single starter task when there are none."""
    tasks = []
    for position, milestone in enumerate(milestones or []):
        details = milestone if isinstance(milestone, dict) else {"title": str(milestone)}
        tasks.append(
            {
                "taskId": first_task_id + position,
                "projectId": project_id,
                "title": details.get("title") or f"Milestone {position + 1}",
                "description": details.get("description", ""),
                "status": TASK_ONGOING,
                "order": position + 1,
                "dueDate": details.get("endDate") or details.get("dueDate"),
                "completed": False,
            }
        )
    if not tasks:
        tasks.append(
            {
                "taskId": first_task_id,
                "projectId": project_id,
                "title": DEFAULT_TASK_TITLE,
                "description": "",
                "status": TASK_ONGOING,
                "order": 1,
                "completed": False,
            }
        )
    return tasks


def match_freelancer(
    repos: Repositories,
    gig_id: Any,
    freelancer_id: Any,
    commissioner_id: Any = None,
    application_id: Any = None,
    acting_user_id: Any = None,
) -> Document:
    """Create the project for ``freelancer_id`` on ``gig_id`` and close the gig."""
    gig_doc = _require(repos.gigs.read(gig_id), "Gig", gig_id)
    gig = Gig.from_dict(gig_doc)
    _check_gig_open(repos, gig)
    if commissioner_id is None:
        commissioner_id = gig.commissioner_id

    if application_id is not None:
        application = GigApplication.from_dict(
            _require(repos.applications.read(application_id), "Application", application_id)
        )
        if not same_id(application.gig_id, gig.id):
            raise GuardViolationError(f"Application {application_id} is for gig {application.gig_id}, not {gig.id}")
        if not same_id(application.freelancer_id, freelancer_id):
            raise GuardViolationError(f"Application {application_id} belongs to another freelancer")
        if normalize_status(application.status) != APPLICATION_PENDING:
            raise GuardViolationError(f"Application {application_id} is {application.status}, not pending")

    project_id = repos.projects.next_id()
    tasks = build_tasks(gig_doc.get("milestones") or [], project_id, repos.tasks.next_id())
    project = Project(
        project_id=project_id,
        title=gig.title,
        status=PROJECT_ONGOING,
        gig_id=gig.id,
        freelancer_id=freelancer_id,
        commissioner_id=commissioner_id,
        extra={
            "description": gig_doc.get("description", ""),
            "totalTasks": len(tasks),
            "invoicingMethod": gig_doc.get("executionMethod") or gig_doc.get("invoicingMethod") or "completion",
        },
    )
    if application_id is not None:
        project.extra["applicationId"] = application_id
    context = GuardContext(
        gig_id=gig.id,
        freelancer_id=freelancer_id,
        commissioner_id=commissioner_id,
        application_id=application_id,
        title=gig.title,
        acting_user_id=acting_user_id,
    )
    outcome = ProjectCreationGuard(repos).create(project.to_dict(), tasks, context)
    logger.info("Matched freelancer %s to gig %s as project %s", freelancer_id, gig.id, project_id)
    return outcome.project


def accept_gig_request(repos: Repositories, request_id: Any, acting_user_id: Any = None) -> Document:
    """Accept a commissioner's direct request and create its project."""
    request_doc = _require(repos.gig_requests.read(request_id), "Gig request", request_id)
    request = GigRequest.from_dict(request_doc)
    if normalize_status(request.status) != REQUEST_PENDING:
        raise GuardViolationError(f"Gig request {request_id} is {request.status}, not pending")
    if acting_user_id is not None and not same_id(acting_user_id, request.freelancer_id):
        raise GuardViolationError(f"User {acting_user_id} cannot accept a request sent to {request.freelancer_id}")

    gig_doc: Document = {}
    if request.gig_id is not None:
        gig_doc = _require(repos.gigs.read(request.gig_id), "Gig", request.gig_id)
        _check_gig_open(repos, Gig.from_dict(gig_doc))

    title = (request.title or gig_doc.get("title") or "").strip()
    if not title:
        raise GuardViolationError(f"Gig request {request_id} has no title")

    project_id = repos.projects.next_id()
    milestones = request_doc.get("milestones") or gig_doc.get("milestones") or []
    tasks = build_tasks(milestones, project_id, repos.tasks.next_id())
    project = Project(
        project_id=project_id,
        title=title,
        status=PROJECT_ONGOING,
        gig_id=request.gig_id,
        freelancer_id=request.freelancer_id,
        commissioner_id=request.commissioner_id,
        extra={
            "description": request_doc.get("description") or gig_doc.get("description", ""),
            "totalTasks": len(tasks),
            "requestId": request.id,
        },
    )
    context = GuardContext(
        gig_id=request.gig_id,
        freelancer_id=request.freelancer_id,
        commissioner_id=request.commissioner_id,
        request_id=request.id,
        title=title,
        acting_user_id=acting_user_id,
    )
    outcome = ProjectCreationGuard(repos).create(project.to_dict(), tasks, context)
    logger.info("Accepted gig request %s as project %s", request.id, project_id)
    return outcome.project


def cancel_project(repos: Repositories, project_id: Any) -> Document:
    """Archive a project and reopen its gig when nothing else holds it."""
    current = _require(repos.projects.read(project_id), "Project", project_id)
    project = Project.from_dict(current)
    if normalize_status(project.status) == PROJECT_ARCHIVED:
        return current

    updated = repos.projects.update(project_id, {"status": PROJECT_ARCHIVED, "cancelledAt": utc_now_iso()})

    application_id = current.get("applicationId")
    if application_id is not None:
        application = repos.applications.read(application_id)
        if application and normalize_status(application.get("status")) == APPLICATION_ACCEPTED:
            repos.applications.update(application_id, {"status": APPLICATION_REJECTED})

    if project.gig_id is not None:
        gig_doc = repos.gigs.read(project.gig_id)
        others = [p for p in _active_projects_for_gig(repos, project.gig_id) if not same_id(p.project_id, project_id)]
        if gig_doc is not None and not others:
            gig = Gig.from_dict(gig_doc)
            if normalize_status(gig.status) != normalize_status(GIG_CLOSED) and not gig.is_available:
                repos.gigs.update(project.gig_id, {"status": GIG_AVAILABLE, "lastModified": utc_now_iso()})
                logger.info("Gig %s reopened after project %s was cancelled", project.gig_id, project_id)

    logger.info("Project %s archived", project_id)
    return updated


__all__ = ["DEFAULT_TASK_TITLE", "accept_gig_request", "build_tasks", "cancel_project", "match_freelancer"]
