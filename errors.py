"""Errors raised by the catalog, customer and reservation operations.

Every error is recoverable: callers (API, CLI) report the message and carry on.
"""


class LibraryError(Exception):
    """Base class for all library errors."""

    kind = "library_error"


class NotFound(LibraryError, LookupError):
    """A referenced book, customer or reservation does not exist."""

    kind = "not_found"


class Unavailable(LibraryError):
    """No free copies of the book remain."""

    kind = "unavailable"


class NotEligible(LibraryError):
    """The customer is at the reservation limit or has an unpaid overdue fine."""

    kind = "not_eligible"


class InvalidTransition(LibraryError):
    kind = "invalid_transition"


class RenewalLimitExceeded(LibraryError):
    kind = "renewal_limit_exceeded"


class DuplicateKey(LibraryError, ValueError):
    """An ISBN or email collides with an existing record."""

    kind = "duplicate_key"


class Conflict(LibraryError):
    """The record changed underneath the caller, or is still referenced.

    Callers should re-read and retry.
    """

    kind = "conflict"


class ValidationError(LibraryError, ValueError):
    kind = "validation_error"


class ExternalServiceError(Exception):
    pass
