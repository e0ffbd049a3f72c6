"""Tests for the read-only consistency validator."""

import pytest

from conftest import snapshot

from gigboard.validator import (
    ACCEPTED_APPLICATION_WITHOUT_PROJECT,
    AVAILABLE_GIG_WITH_PROJECT,
    DUPLICATE_PROJECTS_FOR_GIG,
    INCONSISTENCY_TYPES,
    PENDING_REQUEST_WITH_PROJECT,
    UNAVAILABLE_GIG_WITHOUT_PROJECT,
    ConsistencyValidator,
    Severity,
)

STAMP = "2025-02-01T00:00:00Z"


def _gig(repos, gig_id, status):
    repos.gigs.save(
        {"id": gig_id, "title": f"Gig {gig_id}", "status": status, "commissionerId": 9, "postedDate": STAMP}
    )


def _project(repos, project_id, freelancer_id, gig_id=None, title="", status="ongoing"):
    repos.projects.save(
        {
            "projectId": project_id,
            "gigId": gig_id,
            "freelancerId": freelancer_id,
            "commissionerId": 9,
            "title": title,
            "status": status,
            "createdAt": STAMP,
        }
    )


@pytest.fixture
def seeded(repos):
    """One instance of every inconsistency type, none overlapping."""
    _gig(repos, 1, "Available")
    _project(repos, 1, freelancer_id=11, gig_id=1, title="Gig 1")

    _gig(repos, 2, "Unavailable")

    _gig(repos, 3, "Closed")
    repos.applications.save({"id": 1, "gigId": 3, "freelancerId": 13, "status": "accepted", "submittedAt": STAMP})

    repos.gig_requests.save(
        {"id": 1, "freelancerId": 14, "commissionerId": 9, "title": "Four", "status": "pending", "createdAt": STAMP}
    )
    _project(repos, 2, freelancer_id=14, title="Four")

    _gig(repos, 5, "Unavailable")
    _project(repos, 3, freelancer_id=15, gig_id=5, title="Gig 5")
    _project(repos, 4, freelancer_id=16, gig_id=5, title="Gig 5")
    return repos


def test_clean_store_is_valid(repos):
    report = ConsistencyValidator(repos).run()
    assert report.is_valid
    assert report.recommendations() == ["No action needed."]


def test_reports_exactly_one_of_each_type(seeded):
    report = ConsistencyValidator(seeded).run()

    assert len(report.inconsistencies) == 5
    assert sorted(item.type for item in report.inconsistencies) == sorted(INCONSISTENCY_TYPES)
    assert report.summary()["bySeverity"] == {"HIGH": 3, "MEDIUM": 2}


def test_findings_name_affected_entities(seeded):
    report = ConsistencyValidator(seeded).run()

    (available,) = report.of_type(AVAILABLE_GIG_WITH_PROJECT)
    assert available.affected == {"gigs": [1], "projects": [1]}
    assert available.severity == Severity.HIGH

    (unavailable,) = report.of_type(UNAVAILABLE_GIG_WITHOUT_PROJECT)
    assert unavailable.affected["gigs"] == [2]
    assert unavailable.severity == Severity.MEDIUM

    (accepted,) = report.of_type(ACCEPTED_APPLICATION_WITHOUT_PROJECT)
    assert accepted.affected["gigApplications"] == [1]

    (pending,) = report.of_type(PENDING_REQUEST_WITH_PROJECT)
    assert pending.affected == {"gigRequests": [1], "projects": [2]}

    (duplicate,) = report.of_type(DUPLICATE_PROJECTS_FOR_GIG)
    assert sorted(duplicate.affected["projects"]) == [3, 4]
    assert all(item.suggested_fix for item in report.inconsistencies)


def test_validator_never_writes(seeded, data_dir):
    before = snapshot(data_dir)
    ConsistencyValidator(seeded).run()
    assert snapshot(data_dir) == before


def test_completed_project_justifies_accepted_application_but_not_unavailable_gig(repos):
    _gig(repos, 1, "Unavailable")
    _project(repos, 1, freelancer_id=7, gig_id=1, status="completed")
    repos.applications.save({"id": 1, "gigId": 1, "freelancerId": 7, "status": "accepted", "submittedAt": STAMP})

    report = ConsistencyValidator(repos).run()

    assert [item.type for item in report.inconsistencies] == [UNAVAILABLE_GIG_WITHOUT_PROJECT]
    assert report.for_entity("gigApplications", 1) == []


def test_archived_projects_do_not_count(repos):
    _gig(repos, 1, "Unavailable")
    _project(repos, 1, freelancer_id=7, gig_id=1, status="archived")
    report = ConsistencyValidator(repos).run()
    assert [item.type for item in report.inconsistencies] == [UNAVAILABLE_GIG_WITHOUT_PROJECT]


def test_report_serialises(seeded):
    payload = ConsistencyValidator(seeded).run().to_dict()
    assert payload["isValid"] is False
    assert payload["summary"]["total"] == 5
    assert payload["scanned"]["projects"] == 4
    assert payload["inconsistencies"][0]["suggestedFix"]
    assert payload["recommendations"][-1] == "Run the validator again after repairs."
