from flask import Blueprint, jsonify
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField
from wtforms.validators import DataRequired, Email, Length
from flask_login import current_user, login_user, logout_user, login_required
from extensions import db, login_manager
from models import User
from services.activity_log import ActivityActions, EntityTypes, log_activity
from services.errors import Unauthenticated, raise_for_form
from services.payload import form_data, json_body

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

DEFAULT_AVATAR = "/most-logo.png"

class LoginForm(FlaskForm):
    class Meta:
        csrf = False

    email = StringField("Email", validators=[DataRequired(), Email()])
    password = PasswordField(
        "Password",
        validators=[DataRequired(), Length(max=128, message="Password may be at most 128 characters")],
    )

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))

@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthenticated()

def _session_payload(user):
    payload = user.to_dict()
    payload["id"] = str(user.id)
    payload["image"] = user.image or DEFAULT_AVATAR
    return payload

@bp.route("/login", methods=["POST"])
def login():
    form = LoginForm(formdata=form_data(json_body()))
    raise_for_form(form)
    user = db.session.query(User).filter_by(email=form.email.data.strip().lower()).first()
    if not user or not user.is_active or not user.check_password(form.password.data):
        raise Unauthenticated("Invalid email or password")
    login_user(user, remember=True)
    log_activity(
        action=ActivityActions.USER_LOGIN,
        user_id=user.id,
        entity_type=EntityTypes.USER,
        entity_id=user.id,
        description=f"{user.name} logged in",
    )
    return jsonify({"success": True, "user": _session_payload(user)})

@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_activity(
        action=ActivityActions.USER_LOGOUT,
        user_id=current_user.id,
        entity_type=EntityTypes.USER,
        entity_id=current_user.id,
        description=f"{current_user.name} logged out",
    )
    logout_user()
    return jsonify({"success": True})

@bp.route("/session", methods=["GET"])
def session_info():
    if not current_user.is_authenticated:
        return jsonify({"user": None})
    return jsonify({"user": _session_payload(current_user)})
