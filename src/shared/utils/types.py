from enum import Enum
from typing import Any, Dict, TypedDict, Union


class ErrorType(Enum):
    """
    Enumeration for various error types used in the application.

    Attributes:
        GENERAL_ERROR: Represents a general error that does not fall into specific categories.
        UNKNOWN_ERROR: Represents an unknown or unspecified error.
        VALUE_ERROR: Represents an error caused by invalid values.
        NOT_FOUND: A seller credential or role reference is missing.
        ACCESS_DENIED: Role assumption or the upstream API refused access.
        RATE_LIMITED: The upstream API or the request limiter throttled the call.
        TRANSIENT_ERROR: A temporary upstream or transport failure.
        UPSTREAM_ERROR: The upstream API rejected the request for a non-transient reason.
        CONFLICT: A conditional Task Store write lost the race.
        AWS_ERROR: Represents an error related to AWS services.
        DATABASE_ERROR: Represents an error related to database operations.
        REDIS_ERROR: Represents an error related to Redis operations.
        EVENT_BUS_ERROR: Publishing to the event bus failed.
        DISPATCH_ERROR: Handing a task to the work queue failed.
    """

    GENERAL_ERROR = "GENERAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALUE_ERROR = "VALUE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    CONFLICT = "CONFLICT"
    AWS_ERROR = "AWS_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    REDIS_ERROR = "REDIS_ERROR"
    EVENT_BUS_ERROR = "EVENT_BUS_ERROR"
    DISPATCH_ERROR = "DISPATCH_ERROR"


class LambdaContext:
    """
    A class representing the context object provided to AWS Lambda functions.

    Attributes:
        aws_request_id (str): The unique identifier for the current invocation
            of the Lambda function.
        log_stream_name (str): The name of the CloudWatch log stream for the
            current invocation.
        function_name (str): The name of the Lambda function being executed.
        memory_limit_in_mb (int): The amount of memory allocated to the Lambda
            function, in megabytes.
        invoked_function_arn (str): The Amazon Resource Name (ARN) of the Lambda
            function being invoked.
    """

    aws_request_id: str
    log_stream_name: str
    function_name: str
    memory_limit_in_mb: int
    invoked_function_arn: str

    def get_remaining_time_in_millis(self) -> int: ...


class AwsInfo(TypedDict):
    """
    A TypedDict representing AWS-related information.

    Attributes:
        aws_request_id (str): The unique identifier for the AWS request.
        log_stream_name (str): The name of the log stream associated with the AWS request.
    """

    aws_request_id: str
    log_stream_name: str


class DispatchSummary(TypedDict):
    """
    Counters reported by one Dispatcher cycle.

    Attributes:
        sellers_seen (int): Sellers read from the credential store.
        dispatched (int): Tasks created and handed to the work queue.
        skipped_active (int): Sellers skipped because a Task was already active.
        failed (int): Sellers whose Task could not be created or enqueued.
        deferred (int): Sellers left for the next cycle because the time budget ran out.
        enumeration_incomplete (bool): The credential store failed before every seller was read.
    """

    sellers_seen: int
    dispatched: int
    skipped_active: int
    failed: int
    deferred: int
    enumeration_incomplete: bool


class SuccessResponseBase(TypedDict):
    status: str
    data: Any


class ErrorResponseBase(TypedDict):
    """
    A TypedDict representing the structure of an error response.

    Attributes:
        status (str): The status of the response, typically indicating failure.
        error (Dict[str, str]): Error details with "type" and "message" keys.
    """

    status: str
    error: Dict[str, str]


SuccessResponse = Union[SuccessResponseBase, AwsInfo]
ErrorResponse = Union[ErrorResponseBase, AwsInfo]
ResponseBody = Union[SuccessResponse, ErrorResponse]


class ResponseType(TypedDict):
    """
    ResponseType is a TypedDict that defines the structure of a response object.

    Attributes:
        statusCode (int): The HTTP status code of the response.
        headers (Dict[str, str]): A dictionary containing the headers of the response.
        body (ResponseBody): The body of the response, represented by a ResponseBody object.
    """

    statusCode: int
    headers: Dict[str, str]
    body: ResponseBody
