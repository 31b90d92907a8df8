import enum
import json
from datetime import datetime, timezone
from typing import Optional
from passlib.hash import pbkdf2_sha256
from sqlalchemy.orm import validates
from flask_login import UserMixin
from extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name, **kwargs):
    # Persist the enum values rather than member names
    return db.Column(
        db.Enum(
            enum_cls,
            name=name,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )


class Role(enum.Enum):
    ADMIN = "admin"
    PERSONNEL = "personnel"
    USER = "user"

    @property
    def is_reviewer(self) -> bool:
        return self in (Role.ADMIN, Role.PERSONNEL)

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class CertificateTitle(enum.Enum):
    ENROLLMENT = "ENROLLMENT"
    GRADES = "GRADES"

    @property
    def label(self) -> str:
        return {
            CertificateTitle.ENROLLMENT: "Certificate of Enrollment",
            CertificateTitle.GRADES: "Certificate of Grades",
        }[self]

    @classmethod
    def from_label(cls, label) -> Optional["CertificateTitle"]:
        for member in cls:
            if member.label == label:
                return member
        return None


class Semester(enum.Enum):
    FIRST = "FIRST"
    SECOND = "SECOND"

    @property
    def label(self) -> str:
        return "First Semester" if self is Semester.FIRST else "Second Semester"

    @property
    def slug(self) -> str:
        return self.value.lower()

    @classmethod
    def from_slug(cls, slug) -> Optional["Semester"]:
        for member in cls:
            if member.slug == slug:
                return member
        return None


class SubmissionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_decision(self) -> bool:
        return self in (SubmissionStatus.APPROVED, SubmissionStatus.REJECTED)


class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = _enum_column(Role, "user_role", nullable=False, default=Role.USER)
    status = db.Column(db.String(20), nullable=False, default="active")  # active, inactive
    batch = db.Column(db.String(120))
    phone_number = db.Column(db.String(50))
    address = db.Column(db.String(255))
    image = db.Column(db.String(255))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    submissions = db.relationship(
        "CertificateSubmission",
        cascade="all, delete-orphan",
        back_populates="user",
    )
    deadlines = db.relationship(
        "Deadline",
        cascade="all, delete-orphan",
        back_populates="user",
    )
    grantee = db.relationship(
        "Grantee",
        uselist=False,
        cascade="all, delete-orphan",
        back_populates="user",
        foreign_keys="Grantee.user_id",
    )

    @property
    def is_active(self):
        return self.status == "active"

    @validates("email")
    def _normalize_email(self, key, value):
        # Login looks users up by the lowercased address
        return value.strip().lower() if isinstance(value, str) else value

    def set_password(self, raw):
        if not raw:
            raise ValueError("Password is required")
        self.password_hash = pbkdf2_sha256.hash(raw)

    def check_password(self, raw):
        if not raw or not self.password_hash:
            return False
        try:
            return pbkdf2_sha256.verify(raw, self.password_hash)
        except ValueError:
            return False

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "status": self.status,
            "batch": self.batch,
            "phoneNumber": self.phone_number,
            "address": self.address,
            "image": self.image,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class Grantee(db.Model):
    __tablename__ = "grantees"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    batch = db.Column(db.String(120))
    status = db.Column(db.String(20), nullable=False, default="active")
    added_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship("User", back_populates="grantee", foreign_keys=[user_id])
    added_by = db.relationship("User", foreign_keys=[added_by_id])

    def to_dict(self):
        added_by = None
        if self.added_by is not None:
            added_by = {
                "id": self.added_by.id,
                "name": self.added_by.name,
                "email": self.added_by.email,
            }
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.user.name,
            "email": self.user.email,
            "image": self.user.image,
            "phoneNumber": self.user.phone_number,
            "address": self.user.address,
            "status": self.status,
            "batch": self.batch,
            "addedBy": added_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class CertificateSubmission(db.Model):
    __tablename__ = "certificate_submissions"

    id = db.Column(db.Integer, primary_key=True)
    title = _enum_column(CertificateTitle, "certificate_title", nullable=False)
    semester = _enum_column(Semester, "certificate_semester", nullable=False)
    description = db.Column(db.Text)
    status = _enum_column(
        SubmissionStatus,
        "submission_status",
        nullable=False,
        default=SubmissionStatus.PENDING,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship("User", back_populates="submissions")
    files = db.relationship(
        "SubmissionFile",
        back_populates="submission",
        cascade="all, delete-orphan",
        order_by="SubmissionFile.id",
    )
    remarks = db.relationship(
        "SubmissionRemark",
        back_populates="submission",
        cascade="all, delete-orphan",
        order_by=lambda: (SubmissionRemark.created_at.desc(), SubmissionRemark.id.desc()),
    )

    __table_args__ = (
        db.Index("ix_certificate_submission_user_created", "user_id", "created_at"),
    )


class SubmissionFile(db.Model):
    __tablename__ = "submission_files"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer, db.ForeignKey("certificate_submissions.id"), nullable=False
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_url = db.Column(db.String(1024), nullable=False)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    file_type = db.Column(db.String(120), nullable=False, default="application/pdf")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    submission = db.relationship("CertificateSubmission", back_populates="files")

    def to_dict(self):
        return {
            "id": self.id,
            "fileName": self.file_name,
            "fileUrl": self.file_url,
            "fileSize": self.file_size,
            "fileType": self.file_type,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class SubmissionRemark(db.Model):
    __tablename__ = "submission_remarks"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer, db.ForeignKey("certificate_submissions.id"), nullable=False
    )
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    # Role at the time the remark was written
    author_role = _enum_column(Role, "remark_author_role", nullable=False)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    submission = db.relationship("CertificateSubmission", back_populates="remarks")
    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "remark": self.text,
            "authorId": self.author_id,
            "authorName": self.author.name if self.author else None,
            "authorRole": self.author_role.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), index=True)
    entity_id = db.Column(db.Integer)
    description = db.Column(db.Text, nullable=False)
    # "metadata" is reserved on declarative models
    details = db.Column("metadata", db.Text)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)

    user = db.relationship("User")

    def set_metadata(self, values: Optional[dict]):
        self.details = json.dumps(values, ensure_ascii=False, default=str) if values else None

    def get_metadata(self) -> Optional[dict]:
        if not self.details:
            return None
        try:
            return json.loads(self.details)
        except json.JSONDecodeError:
            return None

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "description": self.description,
            "metadata": self.get_metadata(),
            "userId": self.user_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "user": {
                "id": self.user.id,
                "name": self.user.name,
                "email": self.user.email,
                "role": self.user.role.value,
                "image": self.user.image,
            } if self.user else None,
        }


class Deadline(db.Model):
    __tablename__ = "deadlines"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    priority = db.Column(db.String(10), nullable=False, default="medium")  # low, medium, high
    status = db.Column(db.String(10), nullable=False, default="pending")  # pending, completed
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship("User", back_populates="deadlines")

    def to_dict(self, include_creator=False):
        payload = {
            "id": str(self.id),
            "title": self.title,
            "description": self.description or "",
            "dueDate": self.due_date.isoformat(),
            "priority": self.priority,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_creator:
            payload["createdBy"] = {
                "id": str(self.user.id) if self.user else "",
                "name": self.user.name if self.user else "Unknown",
                "role": self.user.role.value if self.user else "user",
            }
        return payload
