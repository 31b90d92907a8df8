"""Error taxonomy shared by the request handlers and the services."""
from __future__ import annotations


class PortalError(Exception):
    """Base class for errors reported back to the caller."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class Unauthenticated(PortalError):
    status_code = 401
    default_message = "Not authenticated"


class Forbidden(PortalError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(PortalError):
    status_code = 404
    default_message = "Not found"


class InvalidArgument(PortalError):
    status_code = 400
    default_message = "Invalid request"


class Internal(PortalError):
    status_code = 500


class NotificationError(RuntimeError):
    """Raised when an outbound email cannot be delivered."""


def raise_for_form(form) -> None:
    """Validate a WTForms form, raising InvalidArgument with its first error."""
    if form.validate_on_submit():
        return
    for field in form:
        if field.errors:
            raise InvalidArgument(f"{field.label.text}: {field.errors[0]}")
    raise InvalidArgument()
