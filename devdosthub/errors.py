"""Domain errors raised by the data-access and AI layers.

Each error carries the HTTP status it maps to so the FastAPI exception
handler in :mod:`devdosthub.api` can render it without a lookup table.
"""

from __future__ import annotations


class DevDostError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DevDostError):
    status_code = 400
    default_message = "Invalid request."


class InvalidInput(ValidationError):
    default_message = "Please provide a question."


class Unauthenticated(DevDostError):
    status_code = 401
    default_message = "Not authorized — invalid token"


class LegacyAccount(Unauthenticated):
    default_message = (
        "This account was created before password login was enabled. "
        "Please create a new account."
    )


class InvalidCredential(Unauthenticated):
    default_message = "Incorrect password"


class Forbidden(DevDostError):
    status_code = 403
    default_message = "Admin access required"


class NotFound(DevDostError):
    status_code = 404
    default_message = "Not found"


class DuplicateEmail(DevDostError):
    status_code = 400
    default_message = "An account with this email already exists"


class DuplicateRSVP(DevDostError):
    status_code = 400
    default_message = "You have already RSVPed to this event"


class CapacityExceeded(DevDostError):
    status_code = 400
    default_message = "Event is at full capacity"


class RateLimited(DevDostError):
    status_code = 429
    default_message = "AI rate limit reached. Please wait a moment and try again."


class ServiceUnavailable(DevDostError):
    status_code = 500
    default_message = "AI service is not configured. Please set GEMINI_API_KEY."


class UpstreamError(DevDostError):
    status_code = 500
    default_message = "AI service encountered an error. Please try again."
