"""
Error taxonomy shared by the service layer and the HTTP boundary.

Services raise subclasses of ``LibraryError``; each carries the HTTP
status code it maps to so that a single exception handler in
``main.py`` can render every failure into the standard response
envelope ``{"status": false, "message": ...}``.
"""

from datetime import datetime
from typing import Optional


class LibraryError(Exception):
    """Base class for all expected failures of a request."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """A required request field is missing or empty."""

    status_code = 422


class NotFound(LibraryError):
    """A referenced member, book or open loan does not exist."""

    status_code = 404


class Forbidden(LibraryError):
    """The member is inside an active penalty window."""

    status_code = 403

    def __init__(self, message: str, penalty_until: Optional[datetime] = None) -> None:
        super().__init__(message)
        self.penalty_until = penalty_until


class PolicyViolation(LibraryError):
    """A lending rule (borrow limit, single copy) would be broken."""

    status_code = 400


class StorageError(LibraryError):
    """The data store failed while serving the request."""

    status_code = 500
