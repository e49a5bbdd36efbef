"""
Error handling for the application.
"""

from shared.utils.types import ErrorType


class PipelineError(Exception):
    """Base exception for the finances pipeline.

    Every error carries a category and an HTTP-style status code so that
    Lambda handlers can turn it into a standard response and the Worker can
    record it on the Task row.
    """

    default_error_type = ErrorType.GENERAL_ERROR
    default_status_code = 500

    def __init__(
        self,
        message: str,
        error_type: ErrorType = None,
        status_code: int = None,
    ):
        """
        Initialize a PipelineError.

        Args:
            message (str): A human-readable error message.
            error_type (ErrorType): The category of the error (default: the class default).
            status_code (int): HTTP-style status code associated with the error
                (default: the class default).
        """
        self.message = message
        self.error_type = error_type or self.default_error_type
        self.status_code = status_code or self.default_status_code
        super().__init__(self.message)

    def describe(self) -> str:
        """Short form stored in Task.last_error."""
        return f"{self.error_type.value}: {self.message}"


class NotFoundError(PipelineError):
    """A seller credential or role reference does not exist."""

    default_error_type = ErrorType.NOT_FOUND
    default_status_code = 404


class AccessDeniedError(PipelineError):
    """Role assumption or the upstream API refused access."""

    default_error_type = ErrorType.ACCESS_DENIED
    default_status_code = 403


class RateLimitedError(PipelineError):
    """Upstream throttling or a request limiter denial.

    Never retried in-process; the next scheduling cycle resumes from the
    last checkpoint.
    """

    default_error_type = ErrorType.RATE_LIMITED
    default_status_code = 429


class TransientError(PipelineError):
    """A temporary failure of a collaborator (timeouts, 5xx, connection resets)."""

    default_error_type = ErrorType.TRANSIENT_ERROR
    default_status_code = 503


class EventBusError(TransientError):
    """The event bus did not accept every entry of a publish call."""

    default_error_type = ErrorType.EVENT_BUS_ERROR


class DispatchError(TransientError):
    """The work queue did not accept a Worker invocation."""

    default_error_type = ErrorType.DISPATCH_ERROR


class UpstreamError(PipelineError):
    """The upstream finances API rejected the request for a non-transient reason."""

    default_error_type = ErrorType.UPSTREAM_ERROR
    default_status_code = 502


class TaskConflictError(PipelineError):
    """A conditional Task Store write found the row in an unexpected state.

    Expected under overlapping cycles; callers abandon the attempt quietly.
    """

    default_error_type = ErrorType.CONFLICT
    default_status_code = 409


class DatabaseError(PipelineError):
    """Custom exception for database failures.

    Common status codes:
    - 503: Service Unavailable (default) - Database is down or unreachable
    - 400: Bad Request - Invalid query or parameters
    """

    default_error_type = ErrorType.DATABASE_ERROR
    default_status_code = 503


class RedisError(PipelineError):
    """Custom exception for Redis errors.

    Common status codes:
    - 503: Service Unavailable (default) - Redis service is down or unreachable
    """

    default_error_type = ErrorType.REDIS_ERROR
    default_status_code = 503
