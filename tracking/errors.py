"""
tracking/errors.py

Failure taxonomy for the tracking core.
Only PermissionDenied ends a sharing session; every other failure
drops the current cycle and lets the next one supersede it.
"""

from tracking.schemas import FixError, FixErrorKind


class TrackingError(Exception):
    """Base class for all tracking core errors."""


class FixFailure(TrackingError):
    """The position source could not deliver a fix."""

    kind: FixErrorKind

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_fix_error(self) -> FixError:
        return FixError(kind=self.kind, message=self.message)


class PermissionDenied(FixFailure):
    """Location access was refused. Fatal to the sharing session."""

    kind = FixErrorKind.PERMISSION_DENIED


class PositionUnavailable(FixFailure):
    """The device could not determine a position. Transient."""

    kind = FixErrorKind.UNAVAILABLE


class PositionTimeout(FixFailure):
    """No fix arrived before the deadline. Transient."""

    kind = FixErrorKind.TIMEOUT


class PersistenceFailure(TrackingError):
    """A durable-store read or write failed."""


_FAILURES_BY_KIND: dict[FixErrorKind, type[FixFailure]] = {
    FixErrorKind.PERMISSION_DENIED: PermissionDenied,
    FixErrorKind.UNAVAILABLE: PositionUnavailable,
    FixErrorKind.TIMEOUT: PositionTimeout,
}


def failure_from_fix_error(error: FixError) -> FixFailure:
    """Build the exception matching a structured FixError."""
    return _FAILURES_BY_KIND[error.kind](error.message)
