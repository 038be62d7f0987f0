from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    STATE_CONFLICT = "STATE_CONFLICT"
    PERSISTENCE = "PERSISTENCE"
    AUTHORIZATION = "AUTHORIZATION"


class BackofficeError(Exception):
    """Base exception for all back office errors."""

    kind: ErrorKind = ErrorKind.PERSISTENCE
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BackofficeError):
    """Malformed identifier, short reason, non-positive amount or window."""

    kind = ErrorKind.VALIDATION
    status_code = 400
    error_code = "validation_error"


class NotFoundError(BackofficeError):
    """Wallet, validity record or reseller absent when one is required."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404
    error_code = "not_found"


class InsufficientFundsError(BackofficeError):
    """Debit exceeds the wallet balance."""

    kind = ErrorKind.INSUFFICIENT_FUNDS
    status_code = 402
    error_code = "insufficient_funds"

    def __init__(self, message: str, balance=None, requested=None):
        self.balance = balance
        self.requested = requested
        super().__init__(message)


class StateConflictError(BackofficeError):
    """Invalid lifecycle transition."""

    kind = ErrorKind.STATE_CONFLICT
    status_code = 409
    error_code = "state_conflict"


class PersistenceError(BackofficeError):
    """Store unavailable or write failed."""

    kind = ErrorKind.PERSISTENCE
    status_code = 503
    error_code = "persistence_error"


class AuthorizationError(BackofficeError):
    """Acting identity lacks the permission for an operation."""

    kind = ErrorKind.AUTHORIZATION
    status_code = 403
    error_code = "forbidden"


ERRORS_BY_KIND: dict[ErrorKind, type[BackofficeError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        NotFoundError,
        InsufficientFundsError,
        StateConflictError,
        PersistenceError,
        AuthorizationError,
    )
}
