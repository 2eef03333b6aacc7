"""Error taxonomy shared by the domain services and the HTTP layer."""

from __future__ import annotations


class MeetError(Exception):
    """Base class for errors that are reported to API callers as ``{"error": ...}``."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(MeetError, ValueError):
    status_code = 400


class NotFoundError(MeetError, LookupError):
    status_code = 404


class RecordNotFound(NotFoundError):
    """A winner slot does not exist or its details do not match."""


class EventNotFound(NotFoundError):
    pass


class ParticipantNotFound(NotFoundError):
    pass


class SchoolNotFound(NotFoundError):
    pass


class ConflictError(MeetError):
    status_code = 409


class PositionTaken(ConflictError):
    pass


class SchoolExists(ConflictError):
    pass


class SchoolInUse(ConflictError):
    pass


class PreconditionFailedError(MeetError):
    status_code = 413


class StorageError(MeetError, RuntimeError):
    """The backing store failed or left part of a write unprocessed.

    The backend's own message is passed through untouched so operators can
    see what went wrong.
    """

    status_code = 500


class ConditionFailedError(Exception):
    """Raised by the document store when a write precondition does not hold.

    Services translate this into the matching :class:`MeetError`.
    """
