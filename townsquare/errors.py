"""Domain errors raised by the Townsquare services."""

from __future__ import annotations


class TownsquareError(Exception):
    """Base class for errors surfaced to callers."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(TownsquareError):
    """The referenced entity does not exist (or is not visible to the caller)."""

    default_message = "Not found"


class Forbidden(TownsquareError):
    """The caller is known but may not act on this entity."""

    default_message = "You are not allowed to do that."


class ValidationError(TownsquareError):
    """Malformed input; ``errors`` maps each failing field to a reason."""

    default_message = "Some of the fields were invalid."

    def __init__(self, errors: dict[str, str], message: str | None = None):
        self.errors = dict(errors)
        super().__init__(message)


class AlreadyExists(TownsquareError):
    """Duplicate RSVP. Informational, not a fault."""

    default_message = "You have already RSVP'd to this event."


class InvalidOperation(TownsquareError):
    default_message = "That operation is not allowed."


class DependencyUnavailable(TownsquareError):
    """An external collaborator failed. Never leaves the weather client."""

    default_message = "External service unavailable"
