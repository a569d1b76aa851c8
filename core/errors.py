"""
Typed error taxonomy for the coordination core.

Every failure the core reports falls into one of five kinds. Each error
carries a stable machine-readable code and a human message; the API layer
maps kinds to HTTP status codes.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Broad failure category."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


class CoreError(Exception):
    """Base class for all errors raised by the core."""

    kind: ErrorKind = ErrorKind.INVALID
    code: str = "INVALID_REQUEST"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(CoreError):
    """Referenced entity is absent or soft-removed."""

    kind = ErrorKind.NOT_FOUND
    code = "NOT_FOUND"


class ForbiddenError(CoreError):
    """Actor may not read or mutate the entity."""

    kind = ErrorKind.FORBIDDEN
    code = "FORBIDDEN"


class ConflictError(CoreError):
    """A state-machine guard was violated: wrong status, duplicate key, lost race."""

    kind = ErrorKind.CONFLICT
    code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Requested status change is not an edge of the lifecycle."""

    code = "INVALID_STATUS_TRANSITION"


class RequestAlreadyClaimedError(ConflictError):
    """Another mechanic accepted the request first."""

    code = "REQUEST_ALREADY_CLAIMED"


class DuplicateLedgerItemError(ConflictError):
    """The service is already booked under this status update."""

    code = "LEDGER_ITEM_DUPLICATE"


class LedgerItemFinishedError(ConflictError):
    """Finished ledger items cannot be removed."""

    code = "LEDGER_ITEM_FINISHED"


class LedgerIncompleteError(ConflictError):
    """Completion attempted while billable work is still open."""

    code = "LEDGER_INCOMPLETE"


class AlreadyCompletedError(ConflictError):
    """The request was already completed and billed."""

    code = "ALREADY_COMPLETED"


class InvalidError(CoreError):
    """Malformed input: negative price, naive date, bad assignment."""

    kind = ErrorKind.INVALID
    code = "INVALID_REQUEST"


class UnavailableError(CoreError):
    """The persistent store could not be reached. Callers decide whether to retry."""

    kind = ErrorKind.UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
