"""
Main application for the Dispatcher component.
- Triggered by the schedule rule with no payload
- Reads every seller from the credential store, one page at a time
- Creates a PENDING Task per seller that has no active Task
- Invokes the Worker asynchronously for each created Task
"""

import asyncio
import json
from typing import Any, Dict, Optional

from shared.db.database import Database, db
from shared.db.task_store import TaskStore
from shared.services.credential_store import SellerCredentialStore
from shared.services.task_queue import LambdaTaskQueue
from shared.utils.configs import dispatcher_configs
from shared.utils.errors import PipelineError
from shared.utils.helpers import generate_response, get_aws_info, remaining_seconds
from shared.utils.logger import logger
from shared.utils.types import ErrorType

from .service import Dispatcher, TaskQueue


def build_dispatcher(
    database: Optional[Database] = None,
    task_queue: Optional[TaskQueue] = None,
    context: Any = None,
) -> Dispatcher:
    """Wire a Dispatcher to the configured collaborators."""
    budget = dispatcher_configs["time_budget_seconds"]
    remaining = remaining_seconds(context)
    if remaining is not None:
        # Leave time to drain in-flight enqueues and answer
        budget = max(min(budget, remaining - 5), 1.0)

    return Dispatcher(
        credential_store=SellerCredentialStore(),
        task_store=TaskStore(database or db),
        task_queue=task_queue or LambdaTaskQueue(),
        time_budget_seconds=budget,
    )


async def app(
    event: Optional[Dict[str, Any]] = None,
    context: Any = None,
    dispatcher: Optional[Dispatcher] = None,
) -> Dict[str, Any]:
    """
    Run one dispatch cycle.

    Args:
        event: Schedule event (ignored)
        context: Lambda context object
        dispatcher: Pre-built dispatcher (tests, local runs)

    Returns:
        Response object with the cycle summary
    """
    aws_info = get_aws_info(context)
    owns_database = dispatcher is None

    try:
        dispatcher = dispatcher or build_dispatcher(context=context)
        summary = await dispatcher.run_cycle()
        return generate_response(
            200,
            {
                "status": "success",
                "data": summary,
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
    """Run one dispatch cycle as a script for testing."""
    result = asyncio.run(app({}, None))
    print(json.dumps(result, indent=2))
