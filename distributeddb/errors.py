"""
Error taxonomy for the database client.

Every error raised by a remote call is classified by its gRPC status code.
Only ``AbortedError`` is retryable; everything else propagates to the caller
with its classification intact.
"""

from typing import Dict, Optional, Type

import grpc


class DatabaseError(Exception):
    """
    Base class for classified database errors.

    Attributes:
        message: Human readable error message
        code: gRPC status code classifying the error
    """

    code: grpc.StatusCode = grpc.StatusCode.UNKNOWN

    def __init__(self, message: str = "", code: Optional[grpc.StatusCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code.name}: {self.message}"


class AbortedError(DatabaseError):
    """
    Transient conflict detected by the server; the transaction may be retried.

    Attributes:
        retry_delay_ms: Server suggested delay before the next attempt
    """

    code = grpc.StatusCode.ABORTED

    def __init__(self, message: str = "", retry_delay_ms: Optional[int] = None):
        super().__init__(message)
        self.retry_delay_ms = retry_delay_ms


class InvalidArgumentError(DatabaseError):
    code = grpc.StatusCode.INVALID_ARGUMENT


class FailedPreconditionError(DatabaseError):
    code = grpc.StatusCode.FAILED_PRECONDITION


class PermissionDeniedError(DatabaseError):
    code = grpc.StatusCode.PERMISSION_DENIED


class NotFoundError(DatabaseError):
    code = grpc.StatusCode.NOT_FOUND


class SessionNotFoundError(NotFoundError):
    """The session used by a request no longer exists on the server."""


class AlreadyExistsError(DatabaseError):
    code = grpc.StatusCode.ALREADY_EXISTS


class DeadlineExceededError(DatabaseError):
    code = grpc.StatusCode.DEADLINE_EXCEEDED


class CancelledError(DatabaseError):
    code = grpc.StatusCode.CANCELLED


class UnavailableError(DatabaseError):
    code = grpc.StatusCode.UNAVAILABLE


class InternalError(DatabaseError):
    code = grpc.StatusCode.INTERNAL


class UnknownError(DatabaseError):
    code = grpc.StatusCode.UNKNOWN


class AmbiguousOutcomeError(DatabaseError):
    """
    An at-least-once write lost its response after the request was sent.

    The caller cannot tell whether the mutations were applied. The
    underlying transport error is available as ``__cause__`` and its
    status code is kept in ``code``.
    """


class TransactionStateError(DatabaseError):
    """An operation was invoked in a state that does not allow it."""

    code = grpc.StatusCode.FAILED_PRECONDITION


_ERRORS_BY_CODE: Dict[grpc.StatusCode, Type[DatabaseError]] = {
    grpc.StatusCode.ABORTED: AbortedError,
    grpc.StatusCode.INVALID_ARGUMENT: InvalidArgumentError,
    grpc.StatusCode.FAILED_PRECONDITION: FailedPreconditionError,
    grpc.StatusCode.PERMISSION_DENIED: PermissionDeniedError,
    grpc.StatusCode.NOT_FOUND: NotFoundError,
    grpc.StatusCode.ALREADY_EXISTS: AlreadyExistsError,
    grpc.StatusCode.DEADLINE_EXCEEDED: DeadlineExceededError,
    grpc.StatusCode.CANCELLED: CancelledError,
    grpc.StatusCode.UNAVAILABLE: UnavailableError,
    grpc.StatusCode.INTERNAL: InternalError,
    grpc.StatusCode.UNKNOWN: UnknownError,
}


def from_status(code: grpc.StatusCode, message: str = "") -> DatabaseError:
    """
    Build the classified error for a status code.

    Args:
        code: gRPC status code
        message: Error message

    Returns:
        Classified error instance
    """
    if code == grpc.StatusCode.NOT_FOUND and "session not found" in message.lower():
        return SessionNotFoundError(message)

    error_class = _ERRORS_BY_CODE.get(code)
    if error_class is None:
        return DatabaseError(message, code=code)
    return error_class(message)


def from_grpc_error(error: grpc.RpcError) -> DatabaseError:
    """
    Classify an error raised by a gRPC stub.

    Args:
        error: Error raised by a gRPC call (implements ``grpc.Call``)

    Returns:
        Classified error with the original chained as ``__cause__``
    """
    code = error.code() if hasattr(error, "code") else grpc.StatusCode.UNKNOWN
    details = error.details() if hasattr(error, "details") else str(error)

    classified = from_status(code, details or "")
    classified.__cause__ = error
    return classified


def is_retryable_error(error: BaseException) -> bool:
    """
    Determine if an error allows retrying the whole transaction.

    Args:
        error: Exception to check

    Returns:
        True only for aborted transactions
    """
    return isinstance(error, AbortedError)


def is_cancellation(error: BaseException) -> bool:
    """Check if error means the caller gave up (deadline or cancel)."""
    return isinstance(error, (CancelledError, DeadlineExceededError))
