import os
from flask import Flask, abort, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from config import Config
from extensions import db, login_manager, migrate
from models import User, Role
from services.errors import PortalError
from blueprints.auth.routes import bp as auth_bp
from blueprints.certificates.routes import bp as certificates_bp
from blueprints.admin.routes import bp as admin_bp
from blueprints.deadlines.routes import bp as deadlines_bp
from blueprints.user.routes import bp as user_bp

def register_error_handlers(app):
    @app.errorhandler(PortalError)
    def handle_portal_error(exc):
        if exc.status_code >= 500:
            app.logger.error("%s %s failed: %s", request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        messages = {401: "Not authenticated", 403: "Unauthorized"}
        return jsonify({"error": messages.get(exc.code, exc.description)}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(exc):
        db.session.rollback()
        app.logger.exception("Storage error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500

def seed_admin():
    """Create the first admin account from ADMIN_SEED_* settings unless it exists."""
    email = os.getenv("ADMIN_SEED_EMAIL", "admin@example.com").strip().lower()
    if db.session.query(User.id).filter_by(email=email).first():
        return False
    admin = User(name="Admin", email=email, role=Role.ADMIN, status="active")
    admin.set_password(os.getenv("ADMIN_SEED_PASSWORD", "admin123"))
    db.session.add(admin)
    db.session.commit()
    current_app.logger.info("Seeded admin account %s", email)
    return True

def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    app.register_blueprint(auth_bp)
    app.register_blueprint(certificates_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(deadlines_bp)
    app.register_blueprint(user_bp)
    register_error_handlers(app)

    @app.route("/init")
    def init():
        # Outside debug mode seeding needs the INIT_TOKEN query parameter
        token = request.args.get("token")
        if not app.debug and (not token or token != os.getenv("INIT_TOKEN")):
            abort(403)
        db.create_all()
        try:
            created = seed_admin()
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 500
        return jsonify({"success": True, "created": created})

    return app

if __name__ == "__main__":
    app = create_app()
    debug = os.getenv("FLASK_DEBUG") == "1"
    app.run(host="0.0.0.0", port=5000, debug=debug)
