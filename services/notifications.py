"""Email notifications sent to grantees when a reviewer decides on a submission."""
from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from flask import current_app, render_template

from models import CertificateSubmission, SubmissionStatus
from services.errors import NotificationError


@dataclass
class StatusEmail:
    user_name: str
    user_email: str
    certificate_title: str
    semester: str
    submission_date: str
    reviewer_name: str
    approved: bool
    remark: Optional[str] = None

    @property
    def subject(self) -> str:
        if self.approved:
            return f"Certificate Approved - {self.certificate_title}"
        return f"Certificate Update Required - {self.certificate_title}"

    @property
    def template(self) -> str:
        if self.approved:
            return "emails/certificate_approved.html"
        return "emails/certificate_rejected.html"


@dataclass
class NotificationResult:
    sent: bool
    error: Optional[str] = None


def build_status_email(
    submission: CertificateSubmission,
    reviewer_name: str,
    remark: Optional[str] = None,
) -> StatusEmail:
    if not submission.status.is_decision:
        raise ValueError(f"No notification for status {submission.status.value!r}")
    created = submission.created_at
    return StatusEmail(
        user_name=submission.user.name,
        user_email=submission.user.email,
        certificate_title=submission.title.label,
        semester=submission.semester.label,
        submission_date=created.strftime("%B %d, %Y") if created else "",
        reviewer_name=reviewer_name,
        approved=submission.status is SubmissionStatus.APPROVED,
        remark=(remark or "").strip() or None,
    )


def _build_message(email: StatusEmail) -> EmailMessage:
    html = render_template(
        email.template,
        email=email,
        app_url=current_app.config.get("APP_URL", "").rstrip("/"),
    )
    message = EmailMessage()
    message["From"] = current_app.config["MAIL_DEFAULT_SENDER"]
    message["To"] = email.user_email
    message["Subject"] = email.subject
    message.set_content(
        f"Dear {email.user_name},\n\n"
        f"Your {email.certificate_title} ({email.semester}) submitted on "
        f"{email.submission_date} was "
        f"{'approved' if email.approved else 'returned for changes'} "
        f"by {email.reviewer_name}.\n"
        + (f"\nRemark: {email.remark}\n" if email.remark else "")
    )
    message.add_alternative(html, subtype="html")
    return message


def send_status_email(email: StatusEmail) -> None:
    cfg = current_app.config
    server = cfg.get("MAIL_SERVER")
    if not server:
        raise NotificationError("MAIL_SERVER is not configured.")

    message = _build_message(email)
    try:
        with smtplib.SMTP(server, cfg.get("MAIL_PORT", 587), timeout=10) as smtp:
            if cfg.get("MAIL_USE_TLS"):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME"):
                smtp.login(cfg["MAIL_USERNAME"], cfg.get("MAIL_PASSWORD") or "")
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationError(f"Failed to send email to {email.user_email}: {exc}") from exc


def notify_status_change(
    submission: CertificateSubmission,
    reviewer_name: str,
    remark: Optional[str] = None,
) -> NotificationResult:
    """Send the approval/rejection email for an already committed decision.

    Never raises: any failure is logged and reported in the result.
    """
    try:
        email = build_status_email(submission, reviewer_name, remark)
        send_status_email(email)
    except Exception as exc:
        current_app.logger.warning(
            "Notification for submission %s failed: %s", submission.id, exc
        )
        return NotificationResult(sent=False, error=str(exc))
    current_app.logger.info(
        "Sent %s notification for submission %s to %s",
        submission.status.value,
        submission.id,
        email.user_email,
    )
    return NotificationResult(sent=True)
