from flask import Blueprint, jsonify
from flask_login import login_required
from flask_wtf import FlaskForm
from wtforms import DateTimeField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, Length, Optional

from extensions import db
from models import Deadline
from services.activity_log import ActivityActions, EntityTypes, log_activity
from services.auth_context import current_auth_context
from services.errors import Forbidden, NotFound, raise_for_form
from services.payload import form_data, json_body

bp = Blueprint("deadlines", __name__, url_prefix="/api/deadlines")

PRIORITIES = ("low", "medium", "high")
STATUSES = ("pending", "completed")
DUE_DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d",
]


class DeadlineForm(FlaskForm):
    class Meta:
        csrf = False

    title = StringField("Title", validators=[DataRequired(message="Title and due date are required"), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=2000)])
    due_date = DateTimeField(
        "Due date",
        name="dueDate",
        format=DUE_DATE_FORMATS,
        validators=[DataRequired(message="Title and due date are required")],
    )
    priority = StringField(
        "Priority",
        default="medium",
        validators=[Optional(), AnyOf(PRIORITIES, message="Priority must be low, medium, or high")],
    )


class DeadlineUpdateForm(FlaskForm):
    class Meta:
        csrf = False

    title = StringField("Title", validators=[Optional(), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=2000)])
    due_date = DateTimeField("Due date", name="dueDate", format=DUE_DATE_FORMATS, validators=[Optional()])
    priority = StringField(
        "Priority",
        validators=[Optional(), AnyOf(PRIORITIES, message="Priority must be low, medium, or high")],
    )
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf(STATUSES, message="Status must be pending or completed")],
    )


def _owned_deadline(deadline_id, actor):
    deadline = db.session.get(Deadline, deadline_id)
    if not deadline:
        raise NotFound("Deadline not found")
    if deadline.user_id != actor.id:
        raise Forbidden("Unauthorized")
    return deadline


@bp.route("", methods=["GET"])
@login_required
def index():
    current_auth_context()
    deadlines = db.session.query(Deadline).order_by(Deadline.due_date.asc()).all()
    return jsonify([d.to_dict(include_creator=True) for d in deadlines])


@bp.route("", methods=["POST"])
@login_required
def create():
    actor = current_auth_context()
    form = DeadlineForm(formdata=form_data(json_body()))
    raise_for_form(form)
    deadline = Deadline(
        title=form.title.data,
        description=form.description.data or None,
        due_date=form.due_date.data,
        priority=form.priority.data or "medium",
        status="pending",
        user_id=actor.id,
    )
    db.session.add(deadline)
    db.session.commit()
    log_activity(
        action=ActivityActions.DEADLINE_CREATED,
        user_id=actor.id,
        entity_type=EntityTypes.DEADLINE,
        entity_id=deadline.id,
        description=f"Created deadline {deadline.title}",
    )
    return jsonify(deadline.to_dict()), 201


@bp.route("/<int:deadline_id>", methods=["PATCH"])
@login_required
def update(deadline_id):
    actor = current_auth_context()
    deadline = _owned_deadline(deadline_id, actor)
    sent = json_body()
    form = DeadlineUpdateForm(formdata=form_data(sent))
    raise_for_form(form)

    if "title" in sent and form.title.data:
        deadline.title = form.title.data
    if "description" in sent:
        deadline.description = form.description.data or None
    if "dueDate" in sent and form.due_date.data:
        deadline.due_date = form.due_date.data
    if "priority" in sent and form.priority.data:
        deadline.priority = form.priority.data
    completed = False
    if "status" in sent and form.status.data:
        completed = form.status.data == "completed" and deadline.status != "completed"
        deadline.status = form.status.data
    db.session.commit()

    log_activity(
        action=ActivityActions.DEADLINE_COMPLETED if completed else ActivityActions.DEADLINE_UPDATED,
        user_id=actor.id,
        entity_type=EntityTypes.DEADLINE,
        entity_id=deadline.id,
        description=f"{'Completed' if completed else 'Updated'} deadline {deadline.title}",
    )
    return jsonify(deadline.to_dict())


@bp.route("/<int:deadline_id>", methods=["DELETE"])
@login_required
def delete(deadline_id):
    actor = current_auth_context()
    deadline = _owned_deadline(deadline_id, actor)
    title = deadline.title
    db.session.delete(deadline)
    db.session.commit()
    log_activity(
        action=ActivityActions.DEADLINE_DELETED,
        user_id=actor.id,
        entity_type=EntityTypes.DEADLINE,
        entity_id=deadline_id,
        description=f"Deleted deadline {title}",
    )
    return jsonify({"message": "Deadline deleted successfully"})
