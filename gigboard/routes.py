"""HTTP routes for the gig marketplace storage service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import Blueprint, current_app, jsonify, request

from .entities import (
    APPLICATION_PENDING,
    GIG_AVAILABLE,
    REQUEST_PENDING,
    Project,
)
from .errors import (
    EntityNotFoundError,
    GuardViolationError,
    InvalidPathError,
    RequestError,
    RollbackFailureError,
    StorageError,
)
from .matching import accept_gig_request, cancel_project, match_freelancer
from .migration import migrate_store
from .notifications import USER_FREELANCER
from .repositories import Repositories
from .validator import ConsistencyValidator


api_bp = Blueprint("gigboard_api", __name__)


def _repos() -> Repositories:
    return current_app.extensions["gigboard"]


def _payload() -> Dict[str, Any]:
    payload = request.get_json(force=True)
    if not isinstance(payload, dict):
        raise RequestError("Request body must be a JSON object", operation="request")
    return payload


def _acting_user() -> Optional[str]:
    return request.headers.get("X-User-Id") or None


def _require_fields(payload: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if payload.get(name) in (None, "")]
    if missing:
        raise RequestError(f"Missing required field(s): {', '.join(missing)}", operation="request")


def _found(document: Optional[Dict[str, Any]], kind: str, entity_id: str) -> Dict[str, Any]:
    if document is None:
        raise EntityNotFoundError(f"{kind} {entity_id} was not found", operation="read")
    return document


def _filtered(documents: List[Dict[str, Any]], **filters: Optional[str]) -> List[Dict[str, Any]]:
    for field, value in filters.items():
        if value is not None:
            documents = [doc for doc in documents if str(doc.get(field)) == value]
    return documents


@api_bp.errorhandler(StorageError)
def handle_storage_error(exc: StorageError):
    status = 500
    if isinstance(exc, EntityNotFoundError):
        status = 404
    elif isinstance(exc, (InvalidPathError, RequestError)):
        status = 400
    elif isinstance(exc, GuardViolationError) and not isinstance(exc, RollbackFailureError):
        status = 409
    if status == 500:
        current_app.logger.error("Storage failure: %s", exc)
    return jsonify(exc.to_dict()), status


@api_bp.route("/health", methods=["GET"])
def health_check():
    return jsonify({"status": "ok"})


# -- gigs ----------------------------------------------------------------


@api_bp.route("/gigs", methods=["GET"])
def list_gigs():
    gigs = _repos().gigs.read_all()
    return jsonify(
        _filtered(gigs, status=request.args.get("status"), commissionerId=request.args.get("commissionerId"))
    )


@api_bp.route("/gigs", methods=["POST"])
def create_gig():
    payload = _payload()
    _require_fields(payload, "title", "commissionerId")
    gigs = _repos().gigs
    gig = {**payload, "status": payload.get("status") or GIG_AVAILABLE}
    if gig.get("id") is None:
        gig["id"] = gigs.next_id()
    elif gigs.exists(gig["id"]):
        raise GuardViolationError(f"Gig {gig['id']} already exists")
    return jsonify(gigs.save(gig)), 201


@api_bp.route("/gigs/<gig_id>", methods=["GET"])
def gig_detail(gig_id: str):
    return jsonify(_found(_repos().gigs.read(gig_id), "Gig", gig_id))


@api_bp.route("/gigs/<gig_id>", methods=["PATCH"])
def update_gig(gig_id: str):
    return jsonify(_repos().gigs.update(gig_id, _payload()))


@api_bp.route("/gigs/<gig_id>", methods=["DELETE"])
def delete_gig(gig_id: str):
    repos = _repos()
    active = [doc for doc in repos.projects.read_by_parent(gig_id) if Project.from_dict(doc).is_active]
    if active:
        raise GuardViolationError(f"Gig {gig_id} has an active project and cannot be deleted")
    if not repos.gigs.delete(gig_id):
        raise EntityNotFoundError(f"Gig {gig_id} was not found", operation="delete")
    return "", 204


@api_bp.route("/gigs/match-freelancer", methods=["POST"])
def match_freelancer_route():
    payload = _payload()
    _require_fields(payload, "gigId", "freelancerId")
    project = match_freelancer(
        _repos(),
        gig_id=payload["gigId"],
        freelancer_id=payload["freelancerId"],
        commissioner_id=payload.get("commissionerId"),
        application_id=payload.get("applicationId"),
        acting_user_id=_acting_user(),
    )
    return jsonify({"success": True, "project": project}), 201


# -- applications and requests ------------------------------------------


@api_bp.route("/gig-applications", methods=["GET"])
def list_applications():
    applications = _repos().applications
    gig_id = request.args.get("gigId")
    documents = applications.read_by_parent(gig_id) if gig_id else applications.read_all()
    return jsonify(_filtered(documents, freelancerId=request.args.get("freelancerId")))


@api_bp.route("/gig-applications", methods=["POST"])
def submit_application():
    payload = _payload()
    _require_fields(payload, "gigId", "freelancerId")
    repos = _repos()
    _found(repos.gigs.read(payload["gigId"]), "Gig", payload["gigId"])
    application = {**payload, "id": repos.applications.next_id(), "status": APPLICATION_PENDING}
    return jsonify(repos.applications.save(application)), 201


@api_bp.route("/gig-requests", methods=["GET"])
def list_gig_requests():
    requests_ = _repos().gig_requests.read_all()
    return jsonify(
        _filtered(
            requests_,
            freelancerId=request.args.get("freelancerId"),
            commissionerId=request.args.get("commissionerId"),
        )
    )


@api_bp.route("/gig-requests", methods=["POST"])
def create_gig_request():
    payload = _payload()
    _require_fields(payload, "freelancerId", "commissionerId", "title")
    store = _repos().gig_requests
    gig_request = {**payload, "id": store.next_id(), "status": REQUEST_PENDING}
    return jsonify(store.save(gig_request)), 201


@api_bp.route("/gig-requests/<request_id>/accept", methods=["POST"])
def accept_gig_request_route(request_id: str):
    project = accept_gig_request(_repos(), request_id, acting_user_id=_acting_user())
    return jsonify({"success": True, "project": project}), 201


# -- projects ------------------------------------------------------------


@api_bp.route("/projects", methods=["GET"])
def list_projects():
    projects = _repos().projects
    gig_id = request.args.get("gigId")
    return jsonify(projects.read_by_parent(gig_id) if gig_id else projects.read_all())


@api_bp.route("/projects/<project_id>", methods=["GET"])
def project_detail(project_id: str):
    repos = _repos()
    project = _found(repos.projects.read(project_id), "Project", project_id)
    return jsonify({**project, "tasks": repos.tasks.read_by_parent(project_id)})


@api_bp.route("/projects/<project_id>/cancel", methods=["POST"])
def cancel_project_route(project_id: str):
    return jsonify(cancel_project(_repos(), project_id))


# -- notifications -------------------------------------------------------


@api_bp.route("/notifications", methods=["GET"])
def notifications():
    user_id = request.args.get("userId") or _acting_user()
    if not user_id:
        raise RequestError("'userId' is required", operation="request")
    store = _repos().notifications
    events = store.events_for_user(
        user_id,
        user_type=request.args.get("userType", USER_FREELANCER),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify([{**event, "read": store.is_read(event["id"], user_id)} for event in events])


@api_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: str):
    user_id = _acting_user()
    if not user_id:
        raise RequestError("X-User-Id header is required", operation="request")
    store = _repos().notifications
    _found(store.read(notification_id), "Notification", notification_id)
    store.mark_read(notification_id, user_id)
    return jsonify({"id": notification_id, "read": True})


# -- maintenance ---------------------------------------------------------


@api_bp.route("/admin/validate", methods=["GET"])
def validate():
    return jsonify(ConsistencyValidator(_repos()).run().to_dict())


@api_bp.route("/admin/migrate/<entity_type>", methods=["POST"])
def migrate(entity_type: str):
    report = migrate_store(_repos().store(entity_type))
    return jsonify(report.to_dict()), 200 if report.ok else 207


@api_bp.route("/admin/reindex/<entity_type>", methods=["POST"])
def reindex(entity_type: str):
    return jsonify({"entityType": entity_type, **_repos().store(entity_type).reindex()})


__all__ = ["api_bp"]
