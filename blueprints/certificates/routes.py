from flask import Blueprint, jsonify, request, send_from_directory
from flask_login import login_required

from models import Role
from role_required import role_required
from services import storage, submissions
from services.auth_context import current_auth_context
from services.errors import InvalidArgument
from services.payload import json_body

bp = Blueprint("certificates", __name__, url_prefix="/api/certificates")


@bp.route("", methods=["POST"])
@login_required
def create():
    actor = current_auth_context()
    body = json_body()
    submission = submissions.create_submission(
        actor,
        title=body.get("title"),
        semester=body.get("semester"),
        description=body.get("description"),
        files=body.get("files"),
    )
    return jsonify({
        "success": True,
        "submission": submissions.serialize_submission(submission),
        "message": f"Submission created with {len(submission.files)} file(s)",
    })


@bp.route("", methods=["GET"])
@login_required
def index():
    actor = current_auth_context()
    items = submissions.list_submissions(actor)
    return jsonify({
        "success": True,
        "items": [submissions.serialize_submission(s) for s in items],
    })


@bp.route("/<int:submission_id>", methods=["GET"])
@login_required
def detail(submission_id):
    actor = current_auth_context()
    submission = submissions.get_submission(submission_id, actor)
    return jsonify({"success": True, "submission": submissions.serialize_submission(submission)})


@bp.route("/admin", methods=["GET"])
@login_required
@role_required(Role.ADMIN, Role.PERSONNEL)
def admin_index():
    actor = current_auth_context()
    items = submissions.list_submissions(actor)
    return jsonify({
        "success": True,
        "items": [submissions.serialize_submission(s) for s in items],
    })


@bp.route("/admin", methods=["PATCH"])
@login_required
def admin_update():
    # Role check lives in submissions.transition so it also guards direct callers
    actor = current_auth_context()
    body = json_body()
    certificate_id = body.get("certificateId")
    if certificate_id is None or isinstance(certificate_id, bool):
        raise InvalidArgument("Certificate ID is required")
    if isinstance(certificate_id, str) and certificate_id.strip().isdigit():
        certificate_id = int(certificate_id)
    if not isinstance(certificate_id, int):
        raise InvalidArgument("Certificate ID must be an integer")

    submission = submissions.transition(
        certificate_id,
        actor,
        status=body.get("status"),
        is_active=body.get("isActive"),
        remark=body.get("remark"),
    )
    return jsonify({
        "success": True,
        "certificate": submissions.serialize_submission(submission),
        "message": f"Certificate {submission.status.value} successfully",
    })


@bp.route("/upload", methods=["POST"])
@login_required
def upload():
    actor = current_auth_context()
    stored = storage.store_uploads(request.files.getlist("files"), actor.id)
    return jsonify({
        "success": True,
        "files": [item.to_dict() for item in stored],
        "message": f"{len(stored)} file(s) uploaded successfully",
    })


@bp.route("/files/<path:filename>", methods=["GET"])
@login_required
def uploaded_file(filename):
    return send_from_directory(storage.upload_folder(), filename)
