"""
Main application for the Worker component.
- Invoked asynchronously by the Dispatcher with {sellerKey, sellerId, attempt}
- Claims the seller's PENDING Task
- Pages through the seller's shipment financial events from the last checkpoint
- Upserts them, publishes domain events and checkpoints the cursor per page
"""

import asyncio
import json
from dataclasses import asdict
from typing import Any, Dict, Optional

from shared.cache.request_limiter import RequestLimiter
from shared.db.database import Database, db
from shared.db.event_store import ShipmentEventStore
from shared.db.task_store import TaskStore
from shared.schemas.dto import WorkerInvocation
from shared.services.credential_store import SellerCredentialStore
from shared.services.event_bus import EventBridgePublisher
from shared.services.finances_client import FinancesClient
from shared.services.role_service import RoleService
from shared.utils.configs import worker_configs
from shared.utils.errors import PipelineError
from shared.utils.helpers import generate_response, get_aws_info, remaining_seconds
from shared.utils.logger import logger
from shared.utils.types import ErrorType

from .service import TaskExecutor


def build_executor(database: Optional[Database] = None) -> TaskExecutor:
    """Wire a TaskExecutor to the configured AWS, Redis and database collaborators."""
    database = database or db
    return TaskExecutor(
        task_store=TaskStore(database),
        event_store=ShipmentEventStore(database),
        credential_store=SellerCredentialStore(),
        role_service=RoleService(),
        finances_client=FinancesClient(),
        publisher=EventBridgePublisher(),
        limiter=RequestLimiter(),
    )


def time_budget(context: Any) -> float:
    """Configured budget, shrunk to what the invocation has left minus a safety margin."""
    budget = worker_configs["time_budget_seconds"]
    remaining = remaining_seconds(context)
    if remaining is not None:
        budget = min(budget, remaining - worker_configs["safety_margin_seconds"])
    return max(budget, 1.0)


async def app(
    event: Dict[str, Any],
    context: Any = None,
    executor: Optional[TaskExecutor] = None,
) -> Dict[str, Any]:
    """
    Run one seller's Task.

    Args:
        event: Worker payload {sellerKey, sellerId, attempt}
        context: Lambda context object
        executor: Pre-built executor (tests, local runs)

    Returns:
        Response object with the TaskOutcome
    """
    aws_info = get_aws_info(context)

    try:
        invocation = WorkerInvocation.from_payload(event or {})
    except ValueError as e:
        logger.error(f"Invalid worker payload {event}: {str(e)}")
        return generate_response(
            400,
            {
                "status": "error",
                "error": {"type": ErrorType.VALUE_ERROR, "message": str(e)},
                **aws_info,
            },
        )

    owns_database = executor is None
    try:
        executor = executor or build_executor()
        outcome = await executor.run_task(
            invocation.seller_key,
            invocation.seller_id,
            attempt=invocation.attempt,
            time_budget_seconds=time_budget(context),
        )
        return generate_response(
            200,
            {
                "status": "success",
                "data": asdict(outcome),
                **aws_info,
            },
        )

    except PipelineError as e:
        logger.error(f"{e.error_type.value} error: {e.message}")
        return generate_response(
            e.status_code,
            {
                "status": "error",
                "error": {"type": e.error_type, "message": e.message},
                **aws_info,
            },
        )
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        return generate_response(
            500,
            {
                "status": "error",
                "error": {
                    "type": ErrorType.UNKNOWN_ERROR,
                    "message": f"An unexpected error occurred: {e}",
                },
                **aws_info,
            },
        )
    finally:
        # Each asyncio.run gets a new loop; the pooled engine must not outlive it
        if owns_database:
            await db.close()


def lambda_handler(event, context):
    """
    Lambda handler function.

    Args:
        event: Lambda event object
        context: Lambda context object

    Returns:
        Response object
    """
    return asyncio.run(app(event, context))


if __name__ == "__main__":
    """Run one seller's task as a script for testing."""
    import os

    mock_event = {
        "sellerKey": os.getenv("TEST_SELLER_KEY", "default"),
        "sellerId": os.getenv("TEST_SELLER_ID", "A1EXAMPLE"),
    }
    result = asyncio.run(app(mock_event, None))
    print(json.dumps(result, indent=2))
