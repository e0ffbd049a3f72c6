"""Read-only audit of the cross-entity invariants.

The validator only reports. Every finding carries a suggested fix, but
nothing here writes to the store.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .entities import (
    APPLICATION_ACCEPTED,
    PROJECT_COMPLETED,
    REQUEST_PENDING,
    Gig,
    GigApplication,
    GigRequest,
    Project,
    normalize_status,
    same_id,
)
from .paths import utc_now_iso
from .repositories import Repositories


logger = logging.getLogger(__name__)


class Severity(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


AVAILABLE_GIG_WITH_PROJECT = "AVAILABLE_GIG_WITH_PROJECT"
UNAVAILABLE_GIG_WITHOUT_PROJECT = "UNAVAILABLE_GIG_WITHOUT_PROJECT"
ACCEPTED_APPLICATION_WITHOUT_PROJECT = "ACCEPTED_APPLICATION_WITHOUT_PROJECT"
PENDING_REQUEST_WITH_PROJECT = "PENDING_REQUEST_WITH_PROJECT"
DUPLICATE_PROJECTS_FOR_GIG = "DUPLICATE_PROJECTS_FOR_GIG"

INCONSISTENCY_TYPES = (
    AVAILABLE_GIG_WITH_PROJECT,
    UNAVAILABLE_GIG_WITHOUT_PROJECT,
    ACCEPTED_APPLICATION_WITHOUT_PROJECT,
    PENDING_REQUEST_WITH_PROJECT,
    DUPLICATE_PROJECTS_FOR_GIG,
)


@dataclass
class Inconsistency:
    type: str
    severity: Severity
    description: str
    affected: Dict[str, List[Any]]
    suggested_fix: str

    def involves(self, entity_type: str, entity_id: Any) -> bool:
        return any(same_id(candidate, entity_id) for candidate in self.affected.get(entity_type, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "affectedEntities": self.affected,
            "suggestedFix": self.suggested_fix,
        }


@dataclass
class ValidationReport:
    checked_at: str
    scanned: Dict[str, int]
    inconsistencies: List[Inconsistency] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.inconsistencies

    def of_type(self, kind: str) -> List[Inconsistency]:
        return [item for item in self.inconsistencies if item.type == kind]

    def for_entity(self, entity_type: str, entity_id: Any) -> List[Inconsistency]:
        return [item for item in self.inconsistencies if item.involves(entity_type, entity_id)]

    def summary(self) -> Dict[str, Any]:
        return {
            "total": len(self.inconsistencies),
            "byType": dict(Counter(item.type for item in self.inconsistencies)),
            "bySeverity": dict(Counter(item.severity.value for item in self.inconsistencies)),
        }

    def recommendations(self) -> List[str]:
        if self.is_valid:
            return ["No action needed."]
        advice = []
        counts = Counter(item.type for item in self.inconsistencies)
        if counts[AVAILABLE_GIG_WITH_PROJECT] or counts[DUPLICATE_PROJECTS_FOR_GIG]:
            advice.append("Review gigs with active projects first; these can lead to double matching.")
        if counts[UNAVAILABLE_GIG_WITHOUT_PROJECT]:
            advice.append("Reopen or close unavailable gigs that no active project holds.")
        if counts[ACCEPTED_APPLICATION_WITHOUT_PROJECT]:
            advice.append("Create the missing projects for accepted applications, or revert them to pending.")
        if counts[PENDING_REQUEST_WITH_PROJECT]:
            advice.append("Mark gig requests that already have a project as accepted.")
        advice.append("Run the validator again after repairs.")
        return advice

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkedAt": self.checked_at,
            "isValid": self.is_valid,
            "scanned": self.scanned,
            "summary": self.summary(),
            "inconsistencies": [item.to_dict() for item in self.inconsistencies],
            "recommendations": self.recommendations(),
        }


class ConsistencyValidator:
    def __init__(self, repos: Repositories) -> None:
        self.repos = repos

    def run(self) -> ValidationReport:
        gigs = [Gig.from_dict(doc) for doc in self.repos.gigs.read_all(full_scan=True)]
        projects = [Project.from_dict(doc) for doc in self.repos.projects.read_all(full_scan=True)]
        applications = [GigApplication.from_dict(doc) for doc in self.repos.applications.read_all(full_scan=True)]
        requests = [GigRequest.from_dict(doc) for doc in self.repos.gig_requests.read_all(full_scan=True)]

        report = ValidationReport(
            checked_at=utc_now_iso(),
            scanned={
                "gigs": len(gigs),
                "projects": len(projects),
                "gigApplications": len(applications),
                "gigRequests": len(requests),
            },
        )

        active_by_gig: Dict[str, List[Project]] = defaultdict(list)
        for project in projects:
            if project.gig_id is not None and project.is_active:
                active_by_gig[str(project.gig_id)].append(project)

        report.inconsistencies.extend(self._check_gigs(gigs, active_by_gig))
        report.inconsistencies.extend(self._check_applications(applications, projects))
        report.inconsistencies.extend(self._check_requests(requests, projects))
        report.inconsistencies.extend(self._check_duplicates(active_by_gig))

        logger.info(
            "Validation finished: %d inconsistencies across %d gigs and %d projects",
            len(report.inconsistencies),
            len(gigs),
            len(projects),
        )
        return report

    def _check_gigs(self, gigs: List[Gig], active_by_gig: Dict[str, List[Project]]) -> List[Inconsistency]:
        found = []
        for gig in gigs:
            active = active_by_gig.get(str(gig.id), [])
            if gig.is_available and active:
                found.append(
                    Inconsistency(
                        type=AVAILABLE_GIG_WITH_PROJECT,
                        severity=Severity.HIGH,
                        description=f"Gig {gig.id} is Available but has active project(s)",
                        affected={"gigs": [gig.id], "projects": [p.project_id for p in active]},
                        suggested_fix=f"Set gig {gig.id} status to Unavailable",
                    )
                )
            elif gig.is_unavailable and not active:
                found.append(
                    Inconsistency(
                        type=UNAVAILABLE_GIG_WITHOUT_PROJECT,
                        severity=Severity.MEDIUM,
                        description=f"Gig {gig.id} is Unavailable but no active project references it",
                        affected={"gigs": [gig.id]},
                        suggested_fix=f"Set gig {gig.id} back to Available, or Closed if its work is finished",
                    )
                )
        return found

    def _check_applications(self, applications: List[GigApplication], projects: List[Project]) -> List[Inconsistency]:
        found = []
        for application in applications:
            if normalize_status(application.status) != APPLICATION_ACCEPTED:
                continue
            matched = [
                project
                for project in projects
                if _is_live(project)
                and same_id(project.gig_id, application.gig_id)
                and same_id(project.freelancer_id, application.freelancer_id)
            ]
            if not matched:
                found.append(
                    Inconsistency(
                        type=ACCEPTED_APPLICATION_WITHOUT_PROJECT,
                        severity=Severity.HIGH,
                        description=(
                            f"Application {application.id} for gig {application.gig_id} is accepted "
                            f"but freelancer {application.freelancer_id} has no project"
                        ),
                        affected={"gigApplications": [application.id], "gigs": [application.gig_id]},
                        suggested_fix=f"Create the project for application {application.id} or set it back to pending",
                    )
                )
        return found

    def _check_requests(self, requests: List[GigRequest], projects: List[Project]) -> List[Inconsistency]:
        found = []
        for request in requests:
            if normalize_status(request.status) != REQUEST_PENDING:
                continue
            matched = [
                project
                for project in projects
                if project.is_active
                and same_id(project.freelancer_id, request.freelancer_id)
                and same_id(project.commissioner_id, request.commissioner_id)
                and (project.title or "").strip() == (request.title or "").strip()
            ]
            if matched:
                found.append(
                    Inconsistency(
                        type=PENDING_REQUEST_WITH_PROJECT,
                        severity=Severity.MEDIUM,
                        description=f"Gig request {request.id} is pending but project(s) already exist for it",
                        affected={"gigRequests": [request.id], "projects": [p.project_id for p in matched]},
                        suggested_fix=f"Mark gig request {request.id} as accepted",
                    )
                )
        return found

    def _check_duplicates(self, active_by_gig: Dict[str, List[Project]]) -> List[Inconsistency]:
        found = []
        for gig_id, active in sorted(active_by_gig.items()):
            if len(active) < 2:
                continue
            found.append(
                Inconsistency(
                    type=DUPLICATE_PROJECTS_FOR_GIG,
                    severity=Severity.HIGH,
                    description=f"Gig {gig_id} has {len(active)} active projects",
                    affected={"gigs": [gig_id], "projects": [p.project_id for p in active]},
                    suggested_fix=f"Keep one project for gig {gig_id} and archive the others",
                )
            )
        return found


def _is_live(project: Project) -> bool:
    """Active or completed: a project that still justifies an accepted match."""
    return project.is_active or normalize_status(project.status) == PROJECT_COMPLETED


__all__ = [
    "ACCEPTED_APPLICATION_WITHOUT_PROJECT",
    "AVAILABLE_GIG_WITH_PROJECT",
    "ConsistencyValidator",
    "DUPLICATE_PROJECTS_FOR_GIG",
    "INCONSISTENCY_TYPES",
    "Inconsistency",
    "PENDING_REQUEST_WITH_PROJECT",
    "Severity",
    "UNAVAILABLE_GIG_WITHOUT_PROJECT",
    "ValidationReport",
]
