"""Error taxonomy shared by the Kickabout services."""

from __future__ import annotations


class KickaboutError(Exception):
    """Base class for errors that carry a message safe to show users."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(KickaboutError):
    """Bad input; shown inline next to the form."""


class Conflict(ValidationError):
    """A uniqueness rule was violated (taken username, duplicate signup)."""


class NotFound(KickaboutError):
    default_message = "Not found"


class ExternalServiceError(KickaboutError):
    """The mail transport is missing or failed."""

    default_message = "Could not send email."


class EventNotFound(NotFound):
    default_message = "Event not found."


class EventStarted(ValidationError):
    default_message = "This session has already started. Sign-ups are closed."


class EventEnded(ValidationError):
    default_message = "This session has ended."


class AlreadySignedUp(Conflict):
    default_message = "You are already signed up for this session."
