"""Tests for guarded project creation and the matching flows built on it."""

import logging

import pytest

from gigboard.entities import Project
from gigboard.errors import EntityNotFoundError, GuardViolationError, RollbackFailureError, StorageIOError
from gigboard.guard import CreationState, GuardContext, ProjectCreationGuard
from gigboard.matching import accept_gig_request, cancel_project, match_freelancer
from gigboard.validator import UNAVAILABLE_GIG_WITHOUT_PROJECT, ConsistencyValidator


@pytest.fixture
def gig(repos):
    return repos.gigs.save(
        {
            "id": 1,
            "title": "Landing page",
            "status": "Available",
            "commissionerId": 9,
            "postedDate": "2025-04-01T10:00:00Z",
            "milestones": [{"title": "Design"}, {"title": "Build"}],
        }
    )


@pytest.fixture
def application(repos, gig):
    return repos.applications.save(
        {"id": 1, "gigId": 1, "freelancerId": 7, "status": "pending", "submittedAt": "2025-04-02T10:00:00Z"}
    )


def _projects_for(repos, gig_id):
    return repos.projects.read_by_parent(gig_id, full_scan=True)


def _fail_after(original, calls_allowed):
    """Wrap ``original`` so that it raises once it has been called ``calls_allowed`` times."""
    state = {"calls": 0}

    def wrapper(*args, **kwargs):
        state["calls"] += 1
        if state["calls"] > calls_allowed:
            raise StorageIOError("disk full", operation="write")
        return original(*args, **kwargs)

    return wrapper


class TestMatchFreelancer:
    def test_match_commits_everything(self, repos, gig):
        project = match_freelancer(repos, 1, freelancer_id=7, commissioner_id=9)

        assert project["status"] == "ongoing"
        assert project["gigId"] == 1
        assert project["totalTasks"] == 2
        assert repos.gigs.read(1)["status"] == "Unavailable"
        assert [p["projectId"] for p in _projects_for(repos, 1)] == [project["projectId"]]
        assert [t["title"] for t in repos.tasks.read_by_parent(project["projectId"])] == ["Design", "Build"]

    def test_gig_scenario_with_validator(self, repos, gig):
        project = match_freelancer(repos, 1, freelancer_id=7, commissioner_id=9)
        assert ConsistencyValidator(repos).run().for_entity("gigs", 1) == []

        repos.projects.delete(project["projectId"])

        findings = ConsistencyValidator(repos).run().for_entity("gigs", 1)
        assert [finding.type for finding in findings] == [UNAVAILABLE_GIG_WITHOUT_PROJECT]

    def test_application_is_accepted(self, repos, application):
        project = match_freelancer(repos, 1, freelancer_id=7, application_id=1)
        stored = repos.applications.read(1)
        assert stored["status"] == "accepted"
        assert stored["projectId"] == project["projectId"]
        assert project["commissionerId"] == 9

    def test_freelancer_is_notified(self, repos, gig):
        match_freelancer(repos, 1, freelancer_id=7, acting_user_id=9)
        events = repos.notifications.events_for_user(7)
        assert [event["type"] for event in events] == ["project_created"]
        assert events[0]["actorId"] == 9

    def test_default_task_when_gig_has_no_milestones(self, repos):
        repos.gigs.save({"id": 2, "title": "Logo", "status": "Available", "postedDate": "2025-01-01T00:00:00Z"})
        project = match_freelancer(repos, 2, freelancer_id=7, commissioner_id=9)
        assert [t["title"] for t in repos.tasks.read_by_parent(project["projectId"])] == ["Initial setup"]

    @pytest.mark.parametrize("status", ["Unavailable", "Closed"])
    def test_gig_must_be_available(self, repos, gig, status):
        repos.gigs.update(1, {"status": status})
        with pytest.raises(GuardViolationError):
            match_freelancer(repos, 1, freelancer_id=7)
        assert _projects_for(repos, 1) == []

    def test_missing_gig(self, repos):
        with pytest.raises(EntityNotFoundError):
            match_freelancer(repos, 42, freelancer_id=7)

    def test_application_must_match_freelancer(self, repos, application):
        with pytest.raises(GuardViolationError):
            match_freelancer(repos, 1, freelancer_id=8, application_id=1)
        assert repos.applications.read(1)["status"] == "pending"

    def test_second_match_is_refused(self, repos, gig):
        match_freelancer(repos, 1, freelancer_id=7)
        with pytest.raises(GuardViolationError):
            match_freelancer(repos, 1, freelancer_id=8)
        assert len(_projects_for(repos, 1)) == 1

    def test_existing_active_project_blocks_match(self, repos, gig):
        repos.projects.save({"projectId": 50, "gigId": 1, "status": "ongoing", "createdAt": "2025-04-03T00:00:00Z"})
        with pytest.raises(GuardViolationError):
            match_freelancer(repos, 1, freelancer_id=7)
        assert repos.gigs.read(1)["status"] == "Available"


class TestRollback:
    def _assert_untouched(self, repos):
        assert repos.gigs.read(1)["status"] == "Available"
        application = repos.applications.read(1)
        assert application["status"] == "pending"
        assert "projectId" not in application
        assert repos.projects.read_all(full_scan=True) == []
        assert repos.tasks.read_all() == []

    def test_task_write_failure_rolls_back(self, repos, application, monkeypatch):
        monkeypatch.setattr(repos.tasks, "save", _fail_after(repos.tasks.save, 1))

        with pytest.raises(GuardViolationError) as excinfo:
            match_freelancer(repos, 1, freelancer_id=7, application_id=1)

        assert excinfo.value.outcome.state == CreationState.ROLLED_BACK
        assert not isinstance(excinfo.value, RollbackFailureError)
        self._assert_untouched(repos)

    def test_unexpected_task_error_rolls_back(self, repos, application, monkeypatch):
        original = repos.tasks.save
        calls = []

        def flaky_save(task):
            calls.append(task)
            if len(calls) > 1:
                raise ValueError("task payload is not serialisable")
            return original(task)

        monkeypatch.setattr(repos.tasks, "save", flaky_save)

        with pytest.raises(GuardViolationError) as excinfo:
            match_freelancer(repos, 1, freelancer_id=7, application_id=1)

        assert excinfo.value.outcome.state == CreationState.ROLLED_BACK
        assert isinstance(excinfo.value.__cause__, ValueError)
        self._assert_untouched(repos)

    def test_verification_failure_rolls_back(self, repos, application, monkeypatch):
        monkeypatch.setattr(repos.tasks, "read_by_parent", lambda project_id: [])

        with pytest.raises(GuardViolationError) as excinfo:
            match_freelancer(repos, 1, freelancer_id=7, application_id=1)

        outcome = excinfo.value.outcome
        assert outcome.state == CreationState.ROLLED_BACK
        assert any(check.check == "tasks-persisted" and not check.passed for check in outcome.checks)
        self._assert_untouched(repos)

    def test_failure_after_gig_flip_restores_gig(self, repos, application, monkeypatch):
        def refuse(*args, **kwargs):
            raise StorageIOError("read-only filesystem", operation="write")

        monkeypatch.setattr(repos.applications, "update", refuse)

        with pytest.raises(GuardViolationError):
            match_freelancer(repos, 1, freelancer_id=7, application_id=1)

        self._assert_untouched(repos)
        assert "lastModified" not in repos.gigs.read(1)

    def test_failed_compensation_is_critical(self, repos, application, monkeypatch, caplog):
        def refuse(*args, **kwargs):
            raise StorageIOError("read-only filesystem", operation="write")

        monkeypatch.setattr(repos.applications, "update", refuse)
        # first save flips the gig, the restore attempt fails
        monkeypatch.setattr(repos.gigs, "save", _fail_after(repos.gigs.save, 1))

        with caplog.at_level(logging.CRITICAL, logger="gigboard.guard"):
            with pytest.raises(RollbackFailureError) as excinfo:
                match_freelancer(repos, 1, freelancer_id=7, application_id=1)

        assert excinfo.value.code == "ROLLBACK_FAILURE"
        assert excinfo.value.outcome.state == CreationState.ROLLBACK_FAILED
        assert any(record.levelno == logging.CRITICAL for record in caplog.records)
        assert repos.projects.read_all(full_scan=True) == []

    def test_rollback_is_idempotent(self, repos, gig):
        guard = ProjectCreationGuard(repos)
        context = GuardContext(gig_id=1, freelancer_id=7, commissioner_id=9, title="Landing page")
        project = Project(project_id=1, title="Landing page", gig_id=1, freelancer_id=7, commissioner_id=9)
        outcome = guard.create(project.to_dict(), [{"taskId": 1, "title": "Design"}], context)
        assert outcome.success

        assert guard.rollback(context) == []
        assert guard.rollback(context) == []
        assert repos.gigs.read(1)["status"] == "Available"
        assert repos.projects.read(1) is None

    def test_notification_failure_does_not_undo_commit(self, repos, gig):
        def broken_notifier(event):
            raise RuntimeError("mail server down")

        guard = ProjectCreationGuard(repos, notifier=broken_notifier)
        context = GuardContext(gig_id=1, freelancer_id=7, commissioner_id=9, title="Landing page")
        project = Project(project_id=1, title="Landing page", gig_id=1, freelancer_id=7, commissioner_id=9)

        outcome = guard.create(project.to_dict(), [], context)

        assert outcome.state == CreationState.COMMITTED
        assert repos.gigs.read(1)["status"] == "Unavailable"
        assert outcome.project["projectId"] == 1


class TestGigRequests:
    @pytest.fixture
    def gig_request(self, repos):
        return repos.gig_requests.save(
            {
                "id": 1,
                "freelancerId": 7,
                "commissionerId": 9,
                "title": "Album cover",
                "status": "pending",
                "createdAt": "2025-04-01T00:00:00Z",
            }
        )

    def test_accept_creates_project_and_marks_request(self, repos, gig_request):
        project = accept_gig_request(repos, 1, acting_user_id=7)

        assert project["title"] == "Album cover"
        assert project["requestId"] == 1
        assert repos.gig_requests.read(1)["status"] == "accepted"
        assert ConsistencyValidator(repos).run().is_valid

    def test_only_the_requested_freelancer_can_accept(self, repos, gig_request):
        with pytest.raises(GuardViolationError):
            accept_gig_request(repos, 1, acting_user_id=8)
        assert repos.gig_requests.read(1)["status"] == "pending"

    def test_accepted_request_cannot_be_accepted_again(self, repos, gig_request):
        accept_gig_request(repos, 1)
        with pytest.raises(GuardViolationError):
            accept_gig_request(repos, 1)
        assert len(repos.projects.read_all()) == 1

    def test_linked_gig_becomes_unavailable(self, repos, gig, gig_request):
        repos.gig_requests.update(1, {"gigId": 1})
        project = accept_gig_request(repos, 1)
        assert project["gigId"] == 1
        assert repos.gigs.read(1)["status"] == "Unavailable"


class TestCancelProject:
    def test_cancel_reopens_gig(self, repos, application):
        project = match_freelancer(repos, 1, freelancer_id=7, application_id=1)

        cancelled = cancel_project(repos, project["projectId"])

        assert cancelled["status"] == "archived"
        assert repos.gigs.read(1)["status"] == "Available"
        assert repos.applications.read(1)["status"] == "rejected"
        assert ConsistencyValidator(repos).run().is_valid

    def test_cancel_is_idempotent(self, repos, gig):
        project = match_freelancer(repos, 1, freelancer_id=7)
        cancel_project(repos, project["projectId"])
        assert cancel_project(repos, project["projectId"])["status"] == "archived"

    def test_cancel_missing_project(self, repos):
        with pytest.raises(EntityNotFoundError):
            cancel_project(repos, 77)
