"""Audit trail of user actions."""
from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import ActivityLog


class ActivityActions:
    CERTIFICATE_SUBMITTED = "certificate_submitted"
    CERTIFICATE_APPROVED = "certificate_approved"
    CERTIFICATE_REJECTED = "certificate_rejected"
    CERTIFICATE_UPDATED = "certificate_updated"
    CERTIFICATE_REMARK_ADDED = "certificate_remark_added"

    GRANTEE_ADDED = "grantee_added"
    GRANTEE_UPDATED = "grantee_updated"
    GRANTEE_DELETED = "grantee_deleted"

    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_PASSWORD_CHANGED = "user_password_changed"
    USER_PROFILE_UPDATED = "user_profile_updated"

    DEADLINE_CREATED = "deadline_created"
    DEADLINE_UPDATED = "deadline_updated"
    DEADLINE_DELETED = "deadline_deleted"
    DEADLINE_COMPLETED = "deadline_completed"


class EntityTypes:
    CERTIFICATE_SUBMISSION = "CertificateSubmission"
    GRANTEE = "Grantee"
    USER = "User"
    DEADLINE = "Deadline"


def log_activity(
    *,
    action: str,
    user_id: int,
    description: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[dict] = None,
) -> Optional[ActivityLog]:
    """Record an activity entry in its own commit.

    A failure here must not break the request that triggered it, so the
    error is logged and ``None`` returned.
    """
    entry = ActivityLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        user_id=user_id,
    )
    entry.set_metadata(metadata)
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to log activity %s", action)
        return None
    return entry
