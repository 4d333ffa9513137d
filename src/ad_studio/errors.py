"""Error kinds raised and recorded by the ad studio engine."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced to the UI."""

    UNAUTHORIZED = "Unauthorized"
    INSUFFICIENT_CREDITS = "InsufficientCredits"
    FETCH_ERROR = "FetchError"
    TIMEOUT = "Timeout"
    NOT_FOUND = "NotFound"


class StudioError(Exception):
    """Base error for the ad studio engine."""

    kind: ErrorKind = ErrorKind.FETCH_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(StudioError):
    """No valid session token."""

    kind = ErrorKind.UNAUTHORIZED


class InsufficientCreditsError(StudioError):
    """Not enough credits to start a generation."""

    kind = ErrorKind.INSUFFICIENT_CREDITS


class FetchError(StudioError):
    """Network or backend failure."""

    kind = ErrorKind.FETCH_ERROR


class NotFoundError(StudioError):
    """A referenced ad, thread or template does not exist."""

    kind = ErrorKind.NOT_FOUND


class IncompleteWizardError(ValueError):
    """The ad creation wizard is missing required input."""

    def __init__(self, missing: list[str]):
        super().__init__(missing[0] if missing else "Ad creation is incomplete")
        self.missing = missing

