import os
import pytest


# Read by config.py when the app module is first imported
TEST_ENV = {
    "FLASK_DEBUG": "0",
    "SECRET_KEY": "test-secret",
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
}


@pytest.fixture(scope="session", autouse=True)
def _portal_env():
    for key, value in TEST_ENV.items():
        os.environ.setdefault(key, value)
    yield


@pytest.fixture()
def app(tmp_path):
    from app import create_app
    from extensions import db

    app = create_app()
    app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        UPLOAD_FOLDER=str(tmp_path / "uploads"),
        MAIL_SERVER=None,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


PASSWORD = "Password123!"


@pytest.fixture()
def make_user(app):
    from extensions import db
    from models import Role, User

    def _make(name, email, role=Role.USER, batch=None, status="active"):
        with app.app_context():
            user = User(name=name, email=email, role=role, batch=batch, status=status)
            user.set_password(PASSWORD)
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make


@pytest.fixture()
def admin_id(make_user):
    from models import Role

    return make_user("Ada Admin", "admin@example.com", role=Role.ADMIN)


@pytest.fixture()
def personnel_id(make_user):
    from models import Role

    return make_user("Percy Personnel", "personnel@example.com", role=Role.PERSONNEL)


@pytest.fixture()
def grantee_id(make_user):
    return make_user("Grace Grantee", "grace@example.com", batch="MASE 2024")


def _login(app, email):
    client = app.test_client()
    response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture()
def admin_client(app, admin_id):
    return _login(app, "admin@example.com")


@pytest.fixture()
def personnel_client(app, personnel_id):
    return _login(app, "personnel@example.com")


@pytest.fixture()
def grantee_client(app, grantee_id):
    return _login(app, "grace@example.com")


@pytest.fixture()
def sent_emails(monkeypatch):
    """Capture status emails instead of talking to an SMTP server."""
    outbox = []
    monkeypatch.setattr("services.notifications.send_status_email", outbox.append)
    return outbox


@pytest.fixture()
def make_submission(app):
    from extensions import db
    from models import (
        CertificateSubmission,
        CertificateTitle,
        Semester,
        SubmissionFile,
        SubmissionStatus,
    )

    def _make(user_id, status=SubmissionStatus.PENDING, created_at=None,
              title=CertificateTitle.ENROLLMENT, semester=Semester.FIRST):
        with app.app_context():
            submission = CertificateSubmission(
                title=title,
                semester=semester,
                status=status,
                user_id=user_id,
            )
            if created_at is not None:
                submission.created_at = created_at
            submission.files.append(
                SubmissionFile(
                    file_name="enrollment.pdf",
                    file_url="https://files.example.com/enrollment.pdf",
                    file_size=2048,
                    file_type="application/pdf",
                )
            )
            db.session.add(submission)
            db.session.commit()
            return submission.id

    return _make
