from flask import Blueprint, jsonify
from flask_login import current_user, login_required
from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import Email, Length, Optional

from extensions import db
from models import User
from services.activity_log import ActivityActions, EntityTypes, log_activity
from services.errors import InvalidArgument, raise_for_form
from services.payload import form_data, json_body

bp = Blueprint("user", __name__, url_prefix="/api/user")

# JSON key -> User attribute for the optional contact fields
CONTACT_FIELDS = (
    ("batch", "batch"),
    ("phoneNumber", "phone_number"),
    ("address", "address"),
    ("image", "image"),
)


class ProfileForm(FlaskForm):
    class Meta:
        csrf = False

    name = StringField("Name", validators=[Optional(), Length(min=2, max=200, message="Name must be at least 2 characters")])
    email = StringField("Email", validators=[Optional(), Email(message="Please enter a valid email address"), Length(max=255)])
    batch = StringField("Batch", validators=[Optional(), Length(max=120)])
    phone_number = StringField("Phone number", name="phoneNumber", validators=[Optional(), Length(max=50)])
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    image = StringField("Image", validators=[Optional(), Length(max=255)])


@bp.route("/profile", methods=["GET"])
@login_required
def profile():
    return jsonify(current_user.to_dict())


@bp.route("/profile", methods=["PATCH"])
@login_required
def update_profile():
    user = current_user
    sent = json_body()
    form = ProfileForm(formdata=form_data(sent))
    raise_for_form(form)

    if form.email.data:
        email = form.email.data.strip().lower()
        taken = db.session.query(User.id).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise InvalidArgument("Email address is already in use")
        user.email = email
    if form.name.data:
        user.name = form.name.data.strip()
    for key, attr in CONTACT_FIELDS:
        if key in sent:
            setattr(user, attr, getattr(form, attr).data or None)
    db.session.commit()

    log_activity(
        action=ActivityActions.USER_PROFILE_UPDATED,
        user_id=user.id,
        entity_type=EntityTypes.USER,
        entity_id=user.id,
        description=f"{user.name} updated their profile",
        metadata={"fields": sorted(sent)},
    )
    return jsonify(user.to_dict())
