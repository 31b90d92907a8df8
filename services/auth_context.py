"""Per-request identity resolved from the Flask-Login session."""
from __future__ import annotations

from dataclasses import dataclass

from flask_login import current_user

from models import Role
from services.errors import Forbidden, Unauthenticated


@dataclass(frozen=True)
class AuthContext:
    id: int
    role: Role
    name: str = ""

    @property
    def is_reviewer(self) -> bool:
        return self.role.is_reviewer

    def require_reviewer(self) -> None:
        if not self.is_reviewer:
            raise Forbidden("Unauthorized")

    @classmethod
    def from_user(cls, user) -> "AuthContext":
        return cls(id=int(user.id), role=user.role, name=user.name or "")


def current_auth_context() -> AuthContext:
    if not current_user.is_authenticated:
        raise Unauthenticated()
    return AuthContext.from_user(current_user)
