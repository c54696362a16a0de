"""
Domain exceptions for the session booking core.

Services raise these; the HTTP layer turns them into the
``{success: false, message, ...}`` envelopes clients expect.
"""

from datetime import datetime
from typing import Any


class BookingError(Exception):
    """Base class for every error the booking core raises."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'success': False, 'message': self.message}
        payload.update(self.details)
        return payload


class ValidationError(BookingError):
    """Bad or missing input."""

    status_code = 400


class NotFoundError(BookingError):
    """A therapist, user or appointment does not exist."""

    status_code = 404


class ConflictError(BookingError):
    """The request is valid but the current state does not allow it."""

    status_code = 400


class TherapistBusyError(ConflictError):
    def __init__(self, available_at: datetime | None) -> None:
        super().__init__(
            'Therapist is currently busy. Please try again later.',
            details={'availableAt': available_at},
        )
        self.available_at = available_at


class JoinTooEarlyError(ConflictError):
    def __init__(self, minutes: int, can_join_at: datetime) -> None:
        super().__init__(
            f'Session can be joined in {minutes} minute(s)',
            details={'canJoinAt': can_join_at},
        )
        self.minutes = minutes
        self.can_join_at = can_join_at


class SessionEndedError(ConflictError):
    def __init__(self, message: str = 'This session has ended') -> None:
        super().__init__(message)


class UnauthorizedParticipantError(ConflictError):
    """Caller is neither the booking teen nor the assigned therapist."""

    status_code = 403


class UpstreamError(BookingError):
    """A best-effort collaborator (email, video room) failed."""

    status_code = 502


class PersistenceError(BookingError):
    """The record store failed; carries the underlying message."""

    status_code = 500

    def __init__(self, message: str, error: str) -> None:
        super().__init__(message, details={'error': error})
        self.error = error
