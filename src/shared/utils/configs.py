"""
Configuration settings for the application.
"""

import os
from typing import Optional, TypedDict

import pytz
from dotenv import load_dotenv

load_dotenv()


class BaseConfig(TypedDict):
    """Type definition for base configuration values.

    Attributes:
        timezone: pytz timezone used for every stored timestamp
        service_name: Name reported in logs and event sources
        datetime_format: Format string for upstream timestamps
    """

    timezone: pytz.BaseTzInfo
    service_name: str
    datetime_format: str


class AwsConfig(TypedDict):
    """Type definition for AWS collaborator settings.

    Attributes:
        region: Region for boto3 clients
        secrets_table: DynamoDB table holding seller credentials
        event_bus_name: EventBridge bus receiving domain events
        event_source: Source attribute of published events
        worker_function_name: Lambda function executing one seller task
        spapi_role_arn: Default role assumed for upstream calls
        app_credentials_parameter: SSM parameter holding the LWA app credentials
    """

    region: str
    secrets_table: str
    event_bus_name: str
    event_source: str
    worker_function_name: str
    spapi_role_arn: Optional[str]
    app_credentials_parameter: Optional[str]


base_configs: BaseConfig = {
    "timezone": pytz.utc,
    "service_name": os.getenv("SERVICE_NAME", "seller-finances"),
    "datetime_format": "%Y-%m-%dT%H:%M:%SZ",
}

db_configs = {
    "pg_database_url": os.getenv("PG_DATABASE_URL"),
    "echo": os.getenv("DB_ECHO", "false").lower()
    == "true",  # Set to True for debugging
    "pool_size": int(os.getenv("DB_POOL_SIZE", 5)),
    "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 10)),
    "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
    "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
    "pool_pre_ping": os.getenv("DB_POOL_PRE_PING", "true").lower() == "true",
}

redis_config = {
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379"),
    "redis_socket_timeout": int(os.getenv("REDIS_SOCKET_TIMEOUT", 5)),
    "redis_socket_connect_timeout": int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", 5)),
    "redis_retry_on_timeout": os.getenv("REDIS_RETRY_ON_TIMEOUT", "true").lower()
    == "true",
    "redis_decode_responses": os.getenv("REDIS_DECODE_RESPONSES", "true").lower()
    == "true",
}

# Variable names below match the ones wired into the Lambda environment
aws_configs: AwsConfig = {
    "region": os.getenv("AWS_REGION", "us-east-1"),
    "secrets_table": os.getenv("DYNAMODB_SECRETS_TABLE", "sp_api_seller_secrets"),
    "event_bus_name": os.getenv("EVENT_BUS_NAME", "default"),
    "event_source": os.getenv("EVENT_SOURCE", "seller-finances.etl"),
    "worker_function_name": os.getenv(
        "WORKER_FUNCTION_NAME",
        os.getenv("getFinancesListForOneSellerFuncName", "FinancesExecuteTaskForOneSeller"),
    ),
    "spapi_role_arn": os.getenv("SPAPI_ROLE_ARN", os.getenv("Role")),
    "app_credentials_parameter": os.getenv("SELLER_CENTRAL_APP_CREDENTIALS"),
}

dispatcher_configs = {
    # Lambda timeout is 100s; leave room for the response
    "time_budget_seconds": float(os.getenv("DISPATCHER_TIME_BUDGET_SECONDS", 90)),
    "max_concurrency": int(os.getenv("DISPATCHER_MAX_CONCURRENCY", 16)),
    "page_size": int(os.getenv("DISPATCHER_PAGE_SIZE", 100)),
    "stale_task_seconds": int(os.getenv("STALE_TASK_SECONDS", 900)),
}

worker_configs = {
    # Lambda timeout is 600s
    "time_budget_seconds": float(os.getenv("WORKER_TIME_BUDGET_SECONDS", 540)),
    "safety_margin_seconds": float(os.getenv("WORKER_SAFETY_MARGIN_SECONDS", 30)),
    "initial_lookback_days": int(os.getenv("INITIAL_LOOKBACK_DAYS", 30)),
    "max_results_per_page": int(os.getenv("MAX_RESULTS_PER_PAGE", 100)),
    "request_timeout_seconds": float(os.getenv("REQUEST_TIMEOUT_SECONDS", 30)),
}

limiter_configs = {
    "enabled": os.getenv("REQUEST_LIMITER_ENABLED", "true").lower() == "true",
    "max_requests": int(os.getenv("REQUEST_LIMITER_MAX_REQUESTS", 30)),
    "window_seconds": int(os.getenv("REQUEST_LIMITER_WINDOW_SECONDS", 60)),
    "key_prefix": os.getenv("REQUEST_LIMITER_KEY_PREFIX", "sp-api-limiter"),
}

scheduler_configs = {
    "interval_seconds": float(os.getenv("SCHEDULE_INTERVAL_SECONDS", 60)),
    "local_worker_concurrency": int(os.getenv("LOCAL_WORKER_CONCURRENCY", 4)),
}
