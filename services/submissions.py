"""Certificate submission creation, listing and review lifecycle."""
from __future__ import annotations

from typing import Any, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from extensions import db
from models import (
    CertificateSubmission,
    CertificateTitle,
    Semester,
    SubmissionFile,
    SubmissionRemark,
    SubmissionStatus,
    utcnow,
)
from services import notifications
from services.activity_log import ActivityActions, EntityTypes, log_activity
from services.auth_context import AuthContext
from services.errors import Forbidden, Internal, InvalidArgument, NotFound


def serialize_submission(submission: CertificateSubmission) -> dict:
    owner = submission.user
    return {
        "id": submission.id,
        "title": submission.title.label,
        "semester": submission.semester.slug,
        "description": submission.description,
        "status": submission.status.value,
        "isActive": submission.is_active,
        "createdAt": submission.created_at.isoformat() if submission.created_at else None,
        "updatedAt": submission.updated_at.isoformat() if submission.updated_at else None,
        "user": {
            "id": owner.id,
            "name": owner.name,
            "email": owner.email,
            "role": owner.role.value,
            "batch": owner.batch,
            "image": owner.image,
        } if owner else None,
        "files": [f.to_dict() for f in submission.files],
        "remarks": [r.to_dict() for r in submission.remarks],
        "type": "submission",
    }


def _parse_files(files: Any) -> list[SubmissionFile]:
    if not files or not isinstance(files, (list, tuple)):
        raise InvalidArgument("Title and files are required")
    parsed = []
    for descriptor in files:
        if not isinstance(descriptor, dict):
            raise InvalidArgument("Invalid file descriptor")
        name = descriptor.get("fileName")
        url = descriptor.get("fileUrl")
        if not isinstance(name, str) or not isinstance(url, str) or not name or not url:
            raise InvalidArgument("Each file needs a fileName and fileUrl")
        file_type = descriptor.get("fileType")
        if file_type is not None and not isinstance(file_type, str):
            raise InvalidArgument(f"Invalid type for file {name}")
        raw_size = descriptor.get("fileSize")
        if isinstance(raw_size, bool):
            raise InvalidArgument(f"Invalid size for file {name}")
        try:
            size = int(raw_size or 0)
        except (TypeError, ValueError):
            raise InvalidArgument(f"Invalid size for file {name}")
        parsed.append(
            SubmissionFile(
                file_name=name,
                file_url=url,
                file_size=size,
                file_type=file_type or "application/octet-stream",
            )
        )
    return parsed


def create_submission(
    actor: AuthContext,
    title: Any,
    semester: Any,
    description: Optional[str] = None,
    files: Any = None,
) -> CertificateSubmission:
    title_enum = CertificateTitle.from_label(title)
    if title_enum is None:
        raise InvalidArgument(
            'Invalid certificate title. Must be "Certificate of Enrollment" '
            'or "Certificate of Grades"'
        )
    semester_enum = Semester.from_slug(semester)
    if semester_enum is None:
        raise InvalidArgument('Invalid semester. Must be "first" or "second"')
    if description is not None and not isinstance(description, str):
        raise InvalidArgument("Description must be a string")
    file_rows = _parse_files(files)

    submission = CertificateSubmission(
        title=title_enum,
        semester=semester_enum,
        description=description or None,
        status=SubmissionStatus.PENDING,
        is_active=True,
        user_id=actor.id,
    )
    submission.files.extend(file_rows)
    try:
        db.session.add(submission)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Certificate submission failed for user %s", actor.id)
        raise Internal("Failed to submit certificates") from exc

    log_activity(
        action=ActivityActions.CERTIFICATE_SUBMITTED,
        user_id=actor.id,
        entity_type=EntityTypes.CERTIFICATE_SUBMISSION,
        entity_id=submission.id,
        description=f"Submitted {title_enum.label} ({semester_enum.label})",
        metadata={"files": len(file_rows)},
    )
    return submission


def _base_query():
    return db.session.query(CertificateSubmission).options(
        selectinload(CertificateSubmission.files),
        selectinload(CertificateSubmission.remarks),
        selectinload(CertificateSubmission.user),
    )


def list_submissions(actor: AuthContext) -> list[CertificateSubmission]:
    query = _base_query()
    if not actor.is_reviewer:
        query = query.filter(CertificateSubmission.user_id == actor.id)
    return query.order_by(
        CertificateSubmission.created_at.desc(), CertificateSubmission.id.desc()
    ).all()


def get_submission(submission_id: int, actor: AuthContext) -> CertificateSubmission:
    submission = db.session.get(CertificateSubmission, submission_id)
    # Plain users cannot tell someone else's submission apart from a missing one
    if submission is None or (not actor.is_reviewer and submission.user_id != actor.id):
        raise NotFound("Certificate not found")
    return submission


def _parse_status(status: Any) -> Optional[SubmissionStatus]:
    if status is None:
        return None
    try:
        return SubmissionStatus(status)
    except ValueError:
        raise InvalidArgument("Invalid status. Must be pending, approved, or rejected")


def _transition_action(status: Optional[SubmissionStatus]) -> str:
    if status is SubmissionStatus.APPROVED:
        return ActivityActions.CERTIFICATE_APPROVED
    if status is SubmissionStatus.REJECTED:
        return ActivityActions.CERTIFICATE_REJECTED
    return ActivityActions.CERTIFICATE_UPDATED


def transition(
    submission_id: int,
    actor: AuthContext,
    status: Any = None,
    is_active: Any = None,
    remark: Optional[str] = None,
) -> CertificateSubmission:
    """Apply a reviewer decision to a submission.

    The status/active change and the optional remark are committed together.
    Only afterwards, and outside that commit, the grantee is emailed for
    approved/rejected decisions; a failed email leaves the decision in place.
    Repeating the current status still bumps ``updated_at`` and re-sends the
    email.
    """
    if not actor.is_reviewer:
        raise Forbidden("Unauthorized")
    new_status = _parse_status(status)
    if is_active is not None and not isinstance(is_active, bool):
        raise InvalidArgument("isActive must be a boolean")
    if remark is not None and not isinstance(remark, str):
        raise InvalidArgument("Remark must be a string")

    submission = db.session.get(CertificateSubmission, submission_id)
    if submission is None:
        raise NotFound("Certificate not found")

    if new_status is not None:
        submission.status = new_status
    if is_active is not None:
        submission.is_active = is_active
    submission.updated_at = utcnow()

    remark_text = (remark or "").strip()
    if remark_text:
        submission.remarks.append(
            SubmissionRemark(author_id=actor.id, author_role=actor.role, text=remark_text)
        )
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update certificate %s", submission_id)
        raise Internal("Failed to update certificate") from exc

    current_app.logger.info(
        "Certificate %s updated by %s %s: status=%s active=%s",
        submission.id,
        actor.role.value,
        actor.id,
        submission.status.value,
        submission.is_active,
    )
    log_activity(
        action=_transition_action(new_status),
        user_id=actor.id,
        entity_type=EntityTypes.CERTIFICATE_SUBMISSION,
        entity_id=submission.id,
        description=f"{submission.title.label} marked {submission.status.value}",
        metadata={"status": submission.status.value, "isActive": submission.is_active},
    )
    if remark_text:
        log_activity(
            action=ActivityActions.CERTIFICATE_REMARK_ADDED,
            user_id=actor.id,
            entity_type=EntityTypes.CERTIFICATE_SUBMISSION,
            entity_id=submission.id,
            description=f"Remark added to certificate {submission.id}",
            metadata={"remark": remark_text},
        )

    if new_status is not None and new_status.is_decision:
        notifications.notify_status_change(submission, actor.name, remark_text or None)

    return submission
