"""
Utility functions and shared resources.
"""

from .configs import (
    aws_configs,
    base_configs,
    db_configs,
    dispatcher_configs,
    limiter_configs,
    redis_config,
    scheduler_configs,
    worker_configs,
)
from .errors import (
    AccessDeniedError,
    DatabaseError,
    DispatchError,
    EventBusError,
    NotFoundError,
    PipelineError,
    RateLimitedError,
    RedisError,
    TaskConflictError,
    TransientError,
    UpstreamError,
)
from .helpers import (
    PipelineJSONEncoder,
    format_timestamp,
    generate_response,
    get_aws_info,
    parse_timestamp,
    prepare_database_url,
    remaining_seconds,
    utc_now,
)
from .logger import logger
from .types import ErrorType
