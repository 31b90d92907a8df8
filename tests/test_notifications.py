import smtplib

import pytest

from extensions import db
from models import CertificateSubmission, CertificateTitle, Semester, SubmissionStatus
from services import notifications
from services.errors import NotificationError


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.messages = []
        self.started_tls = False
        self.credentials = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.credentials = (username, password)

    def send_message(self, message):
        self.messages.append(message)


@pytest.fixture()
def fake_smtp(app, monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(notifications.smtplib, "SMTP", FakeSMTP)
    app.config.update(
        MAIL_SERVER="smtp.example.com",
        MAIL_PORT=2525,
        MAIL_USERNAME="mailer",
        MAIL_PASSWORD="secret",
        MAIL_USE_TLS=True,
        APP_URL="https://portal.example.com/",
    )
    return FakeSMTP


def _decided(grantee_id, make_submission, status):
    return make_submission(
        grantee_id,
        status=status,
        title=CertificateTitle.GRADES,
        semester=Semester.SECOND,
    )


def test_build_status_email_maps_labels(app, grantee_id, make_submission):
    submission_id = _decided(grantee_id, make_submission, SubmissionStatus.REJECTED)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        email = notifications.build_status_email(submission, "Percy Personnel", "  Blurry scan ")
    assert email.certificate_title == "Certificate of Grades"
    assert email.semester == "Second Semester"
    assert email.approved is False
    assert email.remark == "Blurry scan"
    assert email.subject == "Certificate Update Required - Certificate of Grades"
    assert email.template == "emails/certificate_rejected.html"


def test_build_status_email_refuses_pending(app, grantee_id, make_submission):
    submission_id = make_submission(grantee_id)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        with pytest.raises(ValueError):
            notifications.build_status_email(submission, "Percy Personnel")


def test_send_status_email_requires_mail_server(app, grantee_id, make_submission):
    submission_id = _decided(grantee_id, make_submission, SubmissionStatus.APPROVED)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        email = notifications.build_status_email(submission, "Ada Admin")
        with pytest.raises(NotificationError):
            notifications.send_status_email(email)


def test_send_status_email_over_smtp(app, grantee_id, make_submission, fake_smtp):
    submission_id = _decided(grantee_id, make_submission, SubmissionStatus.APPROVED)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        email = notifications.build_status_email(submission, "Ada Admin", "<b>Well done</b>")
        notifications.send_status_email(email)

    [server] = fake_smtp.instances
    assert (server.host, server.port) == ("smtp.example.com", 2525)
    assert server.started_tls is True
    assert server.credentials == ("mailer", "secret")
    [message] = server.messages
    assert message["To"] == "grace@example.com"
    assert message["Subject"] == "Certificate Approved - Certificate of Grades"
    html = message.get_body(preferencelist=("html",)).get_content()
    assert "Dear Grace Grantee" in html
    assert "Second Semester" in html
    assert "&lt;b&gt;Well done&lt;/b&gt;" in html
    assert "https://portal.example.com/dashboard/submissions" in html


def test_smtp_failure_becomes_notification_error(app, grantee_id, make_submission, fake_smtp, monkeypatch):
    def refuse(self, message):
        raise smtplib.SMTPRecipientsRefused({"grace@example.com": (550, b"no such user")})

    monkeypatch.setattr(FakeSMTP, "send_message", refuse)
    submission_id = _decided(grantee_id, make_submission, SubmissionStatus.REJECTED)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        email = notifications.build_status_email(submission, "Ada Admin")
        with pytest.raises(NotificationError):
            notifications.send_status_email(email)


def test_notify_status_change_reports_failure_without_raising(app, grantee_id, make_submission):
    submission_id = _decided(grantee_id, make_submission, SubmissionStatus.APPROVED)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        result = notifications.notify_status_change(submission, "Ada Admin")
    assert result.sent is False
    assert "MAIL_SERVER" in result.error


def test_notify_status_change_success(app, grantee_id, make_submission, fake_smtp):
    submission_id = _decided(grantee_id, make_submission, SubmissionStatus.APPROVED)
    with app.app_context():
        submission = db.session.get(CertificateSubmission, submission_id)
        result = notifications.notify_status_change(submission, "Ada Admin", "Thanks!")
    assert result.sent is True
    assert len(fake_smtp.instances[0].messages) == 1
