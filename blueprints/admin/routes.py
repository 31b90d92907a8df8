from datetime import datetime, time
from flask import Blueprint, jsonify, request
from flask_wtf import FlaskForm
from wtforms import IntegerField, PasswordField, StringField
from wtforms.validators import AnyOf, DataRequired, Email, Length, Optional
from flask_login import login_required
from extensions import db
from models import (
    ActivityLog,
    CertificateSubmission,
    CertificateTitle,
    Grantee,
    Role,
    Semester,
    SubmissionRemark,
    SubmissionStatus,
    User,
)
from role_required import role_required
from services import analytics
from services.activity_log import ActivityActions, EntityTypes, log_activity
from services.auth_context import current_auth_context
from services.errors import Forbidden, InvalidArgument, NotFound, raise_for_form
from services.payload import form_data, json_body
from services.submissions import serialize_submission
import sqlalchemy as sa

bp = Blueprint("admin", __name__, url_prefix="/api/admin")

REVIEWERS = (Role.ADMIN, Role.PERSONNEL)
GRANTEE_STATUSES = ("active", "inactive")
USER_STATUSES = GRANTEE_STATUSES
USER_ROLES = tuple(role.value for role in Role)
ROLE_MESSAGE = "Role must be admin, personnel, or user"

# ----- Forms -----
class GranteeForm(FlaskForm):
    class Meta:
        csrf = False

    user_id = IntegerField("User ID", name="userId", validators=[DataRequired(message="User ID is required")])
    batch = StringField("Batch", validators=[Optional(), Length(max=120)])
    phone_number = StringField("Phone number", name="phoneNumber", validators=[Optional(), Length(max=50)])
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    status = StringField("Status", default="active", validators=[Optional(), AnyOf(GRANTEE_STATUSES)])

class GranteeUpdateForm(FlaskForm):
    class Meta:
        csrf = False

    batch = StringField("Batch", validators=[Optional(), Length(max=120)])
    phone_number = StringField("Phone number", name="phoneNumber", validators=[Optional(), Length(max=50)])
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    status = StringField("Status", validators=[Optional(), AnyOf(GRANTEE_STATUSES)])

class UserForm(FlaskForm):
    class Meta:
        csrf = False

    name = StringField(
        "Name",
        validators=[DataRequired(), Length(min=2, max=200, message="Name must be at least 2 characters")],
    )
    email = StringField(
        "Email",
        validators=[DataRequired(), Email(message="Please enter a valid email address"), Length(max=255)],
    )
    password = PasswordField(
        "Password",
        validators=[DataRequired(), Length(min=6, max=128, message="Password must be 6 to 128 characters")],
    )
    role = StringField("Role", default="user", validators=[Optional(), AnyOf(USER_ROLES, message=ROLE_MESSAGE)])
    status = StringField("Status", default="active", validators=[Optional(), AnyOf(USER_STATUSES)])
    batch = StringField("Batch", validators=[Optional(), Length(max=120)])
    phone_number = StringField("Phone number", name="phoneNumber", validators=[Optional(), Length(max=50)])
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    image = StringField("Image", validators=[Optional(), Length(max=255)])

class UserUpdateForm(FlaskForm):
    class Meta:
        csrf = False

    name = StringField("Name", validators=[Optional(), Length(min=2, max=200, message="Name must be at least 2 characters")])
    email = StringField("Email", validators=[Optional(), Email(message="Please enter a valid email address"), Length(max=255)])
    password = PasswordField(
        "Password",
        validators=[Optional(), Length(min=6, max=128, message="Password must be 6 to 128 characters")],
    )
    role = StringField("Role", validators=[Optional(), AnyOf(USER_ROLES, message=ROLE_MESSAGE)])
    status = StringField("Status", validators=[Optional(), AnyOf(USER_STATUSES)])
    batch = StringField("Batch", validators=[Optional(), Length(max=120)])
    phone_number = StringField("Phone number", name="phoneNumber", validators=[Optional(), Length(max=50)])
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    image = StringField("Image", validators=[Optional(), Length(max=255)])

def _optional_int(name):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument(f"{name} must be an integer")

def _optional_date(name, end_of_day=False):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidArgument(f"{name} must be an ISO date")
    if end_of_day and "T" not in raw:
        # A bare date covers the whole day
        value = datetime.combine(value.date(), time.max)
    return value

def _get_grantee_for(actor, grantee_id):
    grantee = db.session.get(Grantee, grantee_id)
    if not grantee:
        raise NotFound("Grantee not found")
    if actor.role is Role.PERSONNEL and grantee.added_by_id != actor.id:
        raise Forbidden("Unauthorized")
    return grantee

# ----- Views -----
@bp.route("/analytics")
@login_required
@role_required(*REVIEWERS)
def analytics_view():
    actor = current_auth_context()
    payload = analytics.build_analytics(actor, personnel_id=_optional_int("personnelId"))
    return jsonify(payload)

@bp.route("/overview")
@login_required
@role_required(*REVIEWERS)
def overview():
    submission_counts = dict(
        db.session.query(CertificateSubmission.status, sa.func.count(CertificateSubmission.id))
        .group_by(CertificateSubmission.status)
        .all()
    )
    title_counts = dict(
        db.session.query(CertificateSubmission.title, sa.func.count(CertificateSubmission.id))
        .group_by(CertificateSubmission.title)
        .all()
    )
    semester_counts = dict(
        db.session.query(CertificateSubmission.semester, sa.func.count(CertificateSubmission.id))
        .group_by(CertificateSubmission.semester)
        .all()
    )
    recent_users = db.session.query(User).order_by(User.created_at.desc()).limit(10).all()
    recent_submissions = (
        db.session.query(CertificateSubmission)
        .order_by(CertificateSubmission.created_at.desc())
        .limit(10)
        .all()
    )
    return jsonify({
        "success": True,
        "metrics": {
            "users": {"total": db.session.query(User).count()},
            "submissions": {
                "total": sum(submission_counts.values()),
                "pending": submission_counts.get(SubmissionStatus.PENDING, 0),
                "byTitle": {
                    "enrollment": title_counts.get(CertificateTitle.ENROLLMENT, 0),
                    "grades": title_counts.get(CertificateTitle.GRADES, 0),
                },
                "bySemester": {
                    "first": semester_counts.get(Semester.FIRST, 0),
                    "second": semester_counts.get(Semester.SECOND, 0),
                },
            },
        },
        "recent": {
            "users": [u.to_dict() for u in recent_users],
            "submissions": [serialize_submission(s) for s in recent_submissions],
        },
    })

@bp.route("/activity-logs")
@login_required
@role_required(*REVIEWERS)
def activity_logs():
    page = max(_optional_int("page") or 1, 1)
    limit = min(max(_optional_int("limit") or 50, 1), 200)

    query = db.session.query(ActivityLog)
    if request.args.get("action"):
        query = query.filter(ActivityLog.action == request.args["action"])
    if request.args.get("entityType"):
        query = query.filter(ActivityLog.entity_type == request.args["entityType"])
    user_id = _optional_int("userId")
    if user_id:
        query = query.filter(ActivityLog.user_id == user_id)
    start = _optional_date("startDate")
    if start:
        query = query.filter(ActivityLog.created_at >= start)
    end = _optional_date("endDate", end_of_day=True)
    if end:
        query = query.filter(ActivityLog.created_at <= end)

    total = query.count()
    logs = (
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    actions = [
        row[0]
        for row in db.session.query(ActivityLog.action).distinct().order_by(ActivityLog.action)
    ]
    entity_types = [
        row[0]
        for row in db.session.query(ActivityLog.entity_type)
        .filter(ActivityLog.entity_type.isnot(None))
        .distinct()
        .order_by(ActivityLog.entity_type)
    ]
    return jsonify({
        "logs": [log.to_dict() for log in logs],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
        "filters": {"actions": actions, "entityTypes": entity_types},
    })

@bp.route("/grantees", methods=["GET"])
@login_required
@role_required(*REVIEWERS)
def grantees():
    actor = current_auth_context()
    query = db.session.query(Grantee)
    if actor.role is Role.PERSONNEL:
        query = query.filter(Grantee.added_by_id == actor.id)
    items = query.order_by(Grantee.created_at.desc(), Grantee.id.desc()).all()
    return jsonify([g.to_dict() for g in items])

@bp.route("/grantees", methods=["POST"])
@login_required
@role_required(*REVIEWERS)
def add_grantee():
    actor = current_auth_context()
    form = GranteeForm(formdata=form_data(json_body()))
    raise_for_form(form)
    user = db.session.get(User, form.user_id.data)
    if not user:
        raise NotFound("User not found")
    if db.session.query(Grantee.id).filter_by(user_id=user.id).first():
        raise InvalidArgument("User is already a grantee")

    grantee = Grantee(
        user_id=user.id,
        batch=form.batch.data or user.batch,
        status=form.status.data or "active",
        added_by_id=actor.id,
    )
    # Contact details live on the user record
    if form.phone_number.data:
        user.phone_number = form.phone_number.data
    if form.address.data:
        user.address = form.address.data
    db.session.add(grantee)
    db.session.commit()
    log_activity(
        action=ActivityActions.GRANTEE_ADDED,
        user_id=actor.id,
        entity_type=EntityTypes.GRANTEE,
        entity_id=grantee.id,
        description=f"Added {user.name} as grantee",
        metadata={"batch": grantee.batch},
    )
    return jsonify(grantee.to_dict()), 201

@bp.route("/grantees/<int:grantee_id>", methods=["PATCH"])
@login_required
@role_required(*REVIEWERS)
def update_grantee(grantee_id):
    actor = current_auth_context()
    grantee = _get_grantee_for(actor, grantee_id)
    sent = json_body()
    form = GranteeUpdateForm(formdata=form_data(sent))
    raise_for_form(form)
    if "batch" in sent:
        grantee.batch = form.batch.data or None
    if "status" in sent and form.status.data:
        grantee.status = form.status.data
    if "phoneNumber" in sent:
        grantee.user.phone_number = form.phone_number.data or None
    if "address" in sent:
        grantee.user.address = form.address.data or None
    db.session.commit()
    log_activity(
        action=ActivityActions.GRANTEE_UPDATED,
        user_id=actor.id,
        entity_type=EntityTypes.GRANTEE,
        entity_id=grantee.id,
        description=f"Updated grantee {grantee.user.name}",
        metadata={key: sent[key] for key in ("batch", "status") if key in sent},
    )
    return jsonify(grantee.to_dict())

@bp.route("/grantees/<int:grantee_id>", methods=["DELETE"])
@login_required
@role_required(*REVIEWERS)
def delete_grantee(grantee_id):
    actor = current_auth_context()
    grantee = _get_grantee_for(actor, grantee_id)
    name = grantee.user.name
    db.session.delete(grantee)
    db.session.commit()
    log_activity(
        action=ActivityActions.GRANTEE_DELETED,
        user_id=actor.id,
        entity_type=EntityTypes.GRANTEE,
        entity_id=grantee_id,
        description=f"Removed grantee {name}",
    )
    return jsonify({"success": True})

def _email_taken(email, exclude_id=None):
    query = db.session.query(User.id).filter(User.email == email.strip().lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None

def _get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user

@bp.route("/users", methods=["GET"])
@login_required
@role_required(Role.ADMIN)
def users():
    items = db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify([u.to_dict() for u in items])

@bp.route("/users", methods=["POST"])
@login_required
@role_required(Role.ADMIN)
def add_user():
    actor = current_auth_context()
    form = UserForm(formdata=form_data(json_body()))
    raise_for_form(form)
    if _email_taken(form.email.data):
        raise InvalidArgument("A user with this email already exists")

    user = User(
        name=form.name.data.strip(),
        email=form.email.data,
        role=Role.parse(form.role.data or "user"),
        status=form.status.data or "active",
        batch=form.batch.data or None,
        phone_number=form.phone_number.data or None,
        address=form.address.data or None,
        image=form.image.data or None,
    )
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    log_activity(
        action=ActivityActions.USER_CREATED,
        user_id=actor.id,
        entity_type=EntityTypes.USER,
        entity_id=user.id,
        description=f"Created {user.role.value} account for {user.name}",
        metadata={"email": user.email, "role": user.role.value},
    )
    return jsonify(user.to_dict()), 201

@bp.route("/users/<int:user_id>", methods=["PATCH"])
@login_required
@role_required(Role.ADMIN)
def update_user(user_id):
    actor = current_auth_context()
    user = _get_user(user_id)
    sent = json_body()
    form = UserUpdateForm(formdata=form_data(sent))
    raise_for_form(form)
    if form.email.data and _email_taken(form.email.data, exclude_id=user.id):
        raise InvalidArgument("Email address is already in use")

    if form.name.data:
        user.name = form.name.data.strip()
    if form.email.data:
        user.email = form.email.data
    if form.role.data:
        user.role = Role.parse(form.role.data)
    if form.status.data:
        user.status = form.status.data
    for key, attr, field in (
        ("batch", "batch", form.batch),
        ("phoneNumber", "phone_number", form.phone_number),
        ("address", "address", form.address),
        ("image", "image", form.image),
    ):
        if key in sent:
            setattr(user, attr, field.data or None)
    if form.password.data:
        user.set_password(form.password.data)
    db.session.commit()

    changed = sorted(key for key in sent if key != "password")
    log_activity(
        action=ActivityActions.USER_UPDATED,
        user_id=actor.id,
        entity_type=EntityTypes.USER,
        entity_id=user.id,
        description=f"Updated account of {user.name}",
        metadata={"fields": changed},
    )
    if form.password.data:
        log_activity(
            action=ActivityActions.USER_PASSWORD_CHANGED,
            user_id=actor.id,
            entity_type=EntityTypes.USER,
            entity_id=user.id,
            description=f"Reset password of {user.name}",
        )
    return jsonify(user.to_dict())

@bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
@role_required(Role.ADMIN)
def delete_user(user_id):
    actor = current_auth_context()
    user = _get_user(user_id)
    if user.id == actor.id:
        raise InvalidArgument("You cannot delete your own account")
    if db.session.query(SubmissionRemark.id).filter_by(author_id=user.id).first():
        raise InvalidArgument("User has review remarks; set the account inactive instead")

    name = user.name
    # Submissions, deadlines and the grantee record go with the user
    db.session.query(ActivityLog).filter(ActivityLog.user_id == user.id).delete(
        synchronize_session=False
    )
    db.session.query(Grantee).filter(Grantee.added_by_id == user.id).update(
        {Grantee.added_by_id: None}, synchronize_session=False
    )
    db.session.delete(user)
    db.session.commit()
    log_activity(
        action=ActivityActions.USER_DELETED,
        user_id=actor.id,
        entity_type=EntityTypes.USER,
        entity_id=user_id,
        description=f"Deleted account of {name}",
    )
    return jsonify({"success": True})

@bp.route("/users-for-grantees", methods=["GET"])
@login_required
@role_required(*REVIEWERS)
def users_for_grantees():
    items = (
        db.session.query(User)
        .filter(User.role == Role.USER)
        .order_by(User.name.asc(), User.id.asc())
        .all()
    )
    return jsonify([u.to_dict() for u in items])
