from datetime import datetime

import pytest

from extensions import db
from models import (
    ActivityLog,
    CertificateSubmission,
    CertificateTitle,
    Role,
    Semester,
    SubmissionFile,
    SubmissionRemark,
    SubmissionStatus,
)
from services import submissions
from services.auth_context import AuthContext
from services.errors import Forbidden, InvalidArgument, NotFound, NotificationError


FILES = [
    {
        "fileName": "enrollment.pdf",
        "fileUrl": "https://files.example.com/enrollment.pdf",
        "fileSize": 1024,
        "fileType": "application/pdf",
    },
    {
        "fileName": "id-card.png",
        "fileUrl": "https://files.example.com/id-card.png",
        "fileSize": 512,
        "fileType": "image/png",
    },
]


def _reviewer(user_id, role=Role.PERSONNEL):
    return AuthContext(id=user_id, role=role, name="Percy Personnel")


def _stored_status(submission_id):
    db.session.expire_all()
    return (
        db.session.query(CertificateSubmission.status)
        .filter(CertificateSubmission.id == submission_id)
        .scalar()
    )


def test_create_submission_persists_files(app, grantee_id):
    actor = AuthContext(id=grantee_id, role=Role.USER)
    with app.app_context():
        created = submissions.create_submission(
            actor,
            title="Certificate of Grades",
            semester="second",
            description="Final grades for the term",
            files=FILES,
        )
        assert db.session.query(CertificateSubmission).count() == 1
        assert db.session.query(SubmissionFile).filter_by(submission_id=created.id).count() == 2
        assert created.title is CertificateTitle.GRADES
        assert created.semester is Semester.SECOND
        assert created.status is SubmissionStatus.PENDING
        assert created.is_active is True
        assert created.user_id == grantee_id
        logged = db.session.query(ActivityLog).filter_by(action="certificate_submitted").one()
        assert logged.entity_id == created.id
        assert logged.get_metadata() == {"files": 2}


@pytest.mark.parametrize(
    "title, semester, files",
    [
        ("Bogus", "first", FILES),
        ("Certificate of Enrollment", "third", FILES),
        ("Certificate of Enrollment", None, FILES),
        ("Certificate of Enrollment", "first", []),
        ("Certificate of Enrollment", "first", None),
        ("Certificate of Enrollment", "first", [{"fileName": "no-url.pdf"}]),
    ],
)
def test_create_submission_rejects_invalid_input(app, grantee_id, title, semester, files):
    actor = AuthContext(id=grantee_id, role=Role.USER)
    with app.app_context():
        with pytest.raises(InvalidArgument):
            submissions.create_submission(actor, title=title, semester=semester, files=files)
        assert db.session.query(CertificateSubmission).count() == 0
        assert db.session.query(SubmissionFile).count() == 0


@pytest.mark.parametrize(
    "description, files",
    [
        ({"a": 1}, FILES),
        (["notes"], FILES),
        (None, [{"fileName": {"n": 1}, "fileUrl": "https://files.example.com/x.pdf"}]),
        (None, [{"fileName": "x.pdf", "fileUrl": 42}]),
        (None, [{"fileName": "x.pdf", "fileUrl": "https://files.example.com/x.pdf", "fileType": 7}]),
        (None, [{"fileName": "x.pdf", "fileUrl": "https://files.example.com/x.pdf", "fileSize": True}]),
        (None, [{"fileName": "x.pdf", "fileUrl": "https://files.example.com/x.pdf", "fileSize": "big"}]),
    ],
)
def test_create_submission_rejects_mistyped_fields(app, grantee_id, description, files):
    actor = AuthContext(id=grantee_id, role=Role.USER)
    with app.app_context():
        with pytest.raises(InvalidArgument):
            submissions.create_submission(
                actor,
                title="Certificate of Grades",
                semester="first",
                description=description,
                files=files,
            )
        assert db.session.query(CertificateSubmission).count() == 0


@pytest.mark.parametrize("status", ["done", "APPROVED", "", "cancelled"])
def test_transition_rejects_unknown_status_without_mutation(
    app, personnel_id, grantee_id, make_submission, sent_emails, status
):
    submission_id = make_submission(grantee_id)
    with app.app_context():
        before = db.session.get(CertificateSubmission, submission_id).updated_at
        with pytest.raises(InvalidArgument):
            submissions.transition(
                submission_id, _reviewer(personnel_id), status=status, remark="should not stick"
            )
        db.session.expire_all()
        stored = db.session.get(CertificateSubmission, submission_id)
        assert stored.status is SubmissionStatus.PENDING
        assert stored.updated_at == before
        assert db.session.query(SubmissionRemark).count() == 0
    assert sent_emails == []


def test_transition_forbidden_for_plain_users(app, grantee_id, make_submission, sent_emails):
    submission_id = make_submission(grantee_id)
    actor = AuthContext(id=grantee_id, role=Role.USER)
    with app.app_context():
        with pytest.raises(Forbidden):
            submissions.transition(submission_id, actor, status="approved")
        # Role is checked before the id is resolved
        with pytest.raises(Forbidden):
            submissions.transition(999999, actor, status="approved")
        assert _stored_status(submission_id) is SubmissionStatus.PENDING


def test_transition_missing_submission(app, personnel_id):
    with app.app_context():
        with pytest.raises(NotFound):
            submissions.transition(424242, _reviewer(personnel_id), status="approved")


def test_transition_approves_and_notifies_owner(
    app, personnel_id, grantee_id, make_submission, sent_emails
):
    submission_id = make_submission(grantee_id)
    with app.app_context():
        updated = submissions.transition(
            submission_id,
            _reviewer(personnel_id),
            status="approved",
            remark="  Looks complete.  ",
        )
        assert updated.status is SubmissionStatus.APPROVED
        assert [r.text for r in updated.remarks] == ["Looks complete."]
        assert updated.remarks[0].author_role is Role.PERSONNEL
        assert updated.user.email == "grace@example.com"
        assert len(updated.files) == 1

        actions = {a for (a,) in db.session.query(ActivityLog.action)}
        assert {"certificate_approved", "certificate_remark_added"} <= actions

    assert len(sent_emails) == 1
    email = sent_emails[0]
    assert email.approved is True
    assert email.user_email == "grace@example.com"
    assert email.certificate_title == "Certificate of Enrollment"
    assert email.semester == "First Semester"
    assert email.reviewer_name == "Percy Personnel"
    assert email.remark == "Looks complete."


def test_transition_can_reopen_any_decision(
    app, admin_id, grantee_id, make_submission, sent_emails
):
    submission_id = make_submission(grantee_id)
    admin = _reviewer(admin_id, role=Role.ADMIN)
    with app.app_context():
        for status in ("approved", "rejected", "approved", "pending"):
            submissions.transition(submission_id, admin, status=status)
            assert _stored_status(submission_id) is SubmissionStatus(status)
    # pending does not notify
    assert [e.approved for e in sent_emails] == [True, False, True]


def test_blank_remark_is_not_recorded(app, personnel_id, grantee_id, make_submission, sent_emails):
    submission_id = make_submission(grantee_id)
    with app.app_context():
        updated = submissions.transition(
            submission_id, _reviewer(personnel_id), status="rejected", remark="   "
        )
        assert updated.remarks == []
    assert sent_emails[0].remark is None


def test_remarks_accumulate_newest_first(app, personnel_id, grantee_id, make_submission, sent_emails):
    submission_id = make_submission(grantee_id)
    notes = ["Missing registrar stamp", "Stamp received", "Verified with school"]
    with app.app_context():
        for status, note in zip(("rejected", "pending", "approved"), notes):
            submissions.transition(submission_id, _reviewer(personnel_id), status=status, remark=note)
        db.session.expire_all()
        stored = db.session.get(CertificateSubmission, submission_id)
        assert [r.text for r in stored.remarks] == list(reversed(notes))
        first_remark_id = stored.remarks[-1].id

        submissions.transition(submission_id, _reviewer(personnel_id), is_active=False)
        db.session.expire_all()
        stored = db.session.get(CertificateSubmission, submission_id)
        assert len(stored.remarks) == 3
        assert stored.remarks[-1].id == first_remark_id
        assert stored.remarks[-1].text == notes[0]
        assert stored.is_active is False


def test_remark_keeps_role_at_time_of_writing(app, personnel_id, grantee_id, make_submission, sent_emails):
    from models import User

    submission_id = make_submission(grantee_id)
    with app.app_context():
        submissions.transition(submission_id, _reviewer(personnel_id), remark="First pass")
        db.session.get(User, personnel_id).role = Role.ADMIN
        db.session.commit()
        remark = db.session.query(SubmissionRemark).one()
        assert remark.author_role is Role.PERSONNEL


def test_notification_failure_does_not_fail_transition(
    app, personnel_id, grantee_id, make_submission, monkeypatch
):
    def broken_send(email):
        raise NotificationError("SMTP relay unavailable")

    monkeypatch.setattr("services.notifications.send_status_email", broken_send)
    submission_id = make_submission(grantee_id)
    with app.app_context():
        updated = submissions.transition(submission_id, _reviewer(personnel_id), status="approved")
        assert updated.status is SubmissionStatus.APPROVED
        assert _stored_status(submission_id) is SubmissionStatus.APPROVED


def test_unexpected_notification_error_is_also_contained(
    app, personnel_id, grantee_id, make_submission, monkeypatch
):
    def exploding_send(email):
        raise RuntimeError("template missing")

    monkeypatch.setattr("services.notifications.send_status_email", exploding_send)
    submission_id = make_submission(grantee_id)
    with app.app_context():
        submissions.transition(submission_id, _reviewer(personnel_id), status="rejected")
        assert _stored_status(submission_id) is SubmissionStatus.REJECTED


def test_repeating_status_bumps_timestamp_and_renotifies(
    app, personnel_id, grantee_id, make_submission, sent_emails
):
    submission_id = make_submission(grantee_id)
    stale = datetime(2020, 1, 1, 12, 0, 0)
    with app.app_context():
        submissions.transition(submission_id, _reviewer(personnel_id), status="approved")
        stored = db.session.get(CertificateSubmission, submission_id)
        stored.updated_at = stale
        db.session.commit()

        submissions.transition(submission_id, _reviewer(personnel_id), status="approved")
        db.session.expire_all()
        stored = db.session.get(CertificateSubmission, submission_id)
        assert stored.status is SubmissionStatus.APPROVED
        assert stored.updated_at.replace(tzinfo=None) > stale
    assert len(sent_emails) == 2


def test_list_submissions_is_scoped_for_plain_users(
    app, admin_id, grantee_id, make_user, make_submission
):
    other_id = make_user("Omar Other", "omar@example.com")
    make_submission(grantee_id)
    make_submission(other_id)
    with app.app_context():
        own = submissions.list_submissions(AuthContext(id=grantee_id, role=Role.USER))
        assert [s.user_id for s in own] == [grantee_id]
        everything = submissions.list_submissions(AuthContext(id=admin_id, role=Role.ADMIN))
        assert len(everything) == 2
