"""
Service that runs one seller's ingestion task.
"""

import re
import time
from typing import Callable, Optional

from shared.cache.request_limiter import RequestLimiter
from shared.db.event_store import ShipmentEventStore
from shared.db.task_store import TaskStore
from shared.schemas.dto import DomainEvent, Task, TaskOutcome, TaskStatus
from shared.services.credential_store import SellerCredentialStore
from shared.services.event_bus import EventBridgePublisher
from shared.services.finances_client import FinancesClient
from shared.services.role_service import RoleService
from shared.utils.configs import worker_configs
from shared.utils.errors import PipelineError, RateLimitedError, TaskConflictError
from shared.utils.logger import logger
from shared.utils.types import ErrorType

from .normalizer import normalize_page

LIMITED_OPERATION = "listFinancialEvents"


def role_session_name(seller_key: str, seller_id: str) -> str:
    """STS session names allow only [\\w+=,.@-] and at most 64 characters."""
    name = f"{seller_key}-{seller_id}"
    return re.sub(r"[^\w+=,.@-]", "-", name, flags=re.ASCII)[:64]


class TaskExecutor:
    """
    Executes the Task of one seller.

    Per page the order is fixed: upsert the events, publish the domain events
    still pending, mark them published, then checkpoint the cursor. A crash
    anywhere in between therefore repeats at most the current page.
    """

    def __init__(
        self,
        task_store: TaskStore,
        event_store: ShipmentEventStore,
        credential_store: SellerCredentialStore,
        role_service: RoleService,
        finances_client: FinancesClient,
        publisher: EventBridgePublisher,
        limiter: Optional[RequestLimiter] = None,
        time_budget_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.task_store = task_store
        self.event_store = event_store
        self.credential_store = credential_store
        self.role_service = role_service
        self.finances_client = finances_client
        self.publisher = publisher
        self.limiter = limiter
        self.time_budget_seconds = (
            time_budget_seconds or worker_configs["time_budget_seconds"]
        )
        self.clock = clock

    async def run_task(
        self,
        seller_key: str,
        seller_id: str,
        attempt: Optional[int] = None,
        time_budget_seconds: Optional[float] = None,
    ) -> TaskOutcome:
        """
        Run the seller's PENDING Task to a terminal status.

        Args:
            seller_key: Tenant part of the Task identity
            seller_id: Seller part of the Task identity
            attempt: Dispatch attempt the invocation belongs to; None accepts
                whichever attempt is PENDING
            time_budget_seconds: Wall-clock budget for this run

        Returns:
            TaskOutcome. SKIPPED when the Task was not PENDING (a duplicate or
            late invocation), SUPERSEDED when a newer attempt took the Task
            over mid-run.
        """
        budget = time_budget_seconds or self.time_budget_seconds
        deadline = self.clock() + budget

        try:
            task = await self.task_store.mark_running(seller_key, seller_id, attempt)
        except TaskConflictError as e:
            logger.info(f"Skipping {seller_key}/{seller_id}: {e.message}")
            return TaskOutcome(
                seller_key=seller_key,
                seller_id=seller_id,
                status=TaskOutcome.SKIPPED,
                error=e.message,
            )

        logger.info(
            f"Running task {seller_key}/{seller_id} attempt {task.attempt} "
            f"from cursor {task.last_cursor} with budget {budget:.0f}s"
        )
        outcome = TaskOutcome(
            seller_key=seller_key,
            seller_id=seller_id,
            status=TaskStatus.RUNNING.value,
            cursor=task.last_cursor,
        )

        try:
            await self._ingest(task, outcome, deadline)
        except TaskConflictError as e:
            logger.warning(
                f"Task {seller_key}/{seller_id} attempt {task.attempt} was superseded: "
                f"{e.message}"
            )
            outcome.status = TaskOutcome.SUPERSEDED
            outcome.error = e.message
        except PipelineError as e:
            logger.error(
                f"Task {seller_key}/{seller_id} failed with {e.error_type.value}: {e.message}"
            )
            await self._fail(task, outcome, e.describe())
        except Exception as e:
            logger.error(f"Unexpected error in task {seller_key}/{seller_id}: {str(e)}")
            await self._fail(task, outcome, f"{ErrorType.UNKNOWN_ERROR.value}: {str(e)}")

        return outcome

    async def _ingest(self, task: Task, outcome: TaskOutcome, deadline: float):
        credential = await self.credential_store.get(task.seller_key, task.seller_id)
        scoped = await self.role_service.assume(
            credential.role_arn, role_session_name(task.seller_key, task.seller_id)
        )
        cursor = task.last_cursor

        while True:
            if self.limiter and not await self.limiter.acquire(
                task.seller_id, LIMITED_OPERATION
            ):
                raise RateLimitedError(
                    message=f"Request limit reached for seller {task.seller_id}"
                )

            page = await self.finances_client.fetch_page(credential, scoped, cursor)
            events = normalize_page(page.records, task.seller_id)

            pending = await self.event_store.upsert_events(events)
            if pending:
                outcome.events_published += await self.publisher.publish(
                    [DomainEvent.from_shipment_event(event) for event in pending]
                )
                await self.event_store.mark_published(pending)

            await self.task_store.checkpoint(
                task.seller_key, task.seller_id, task.attempt, page.next_cursor, len(events)
            )
            cursor = page.next_cursor
            outcome.cursor = cursor
            outcome.records_ingested += len(events)

            if not page.has_more:
                break
            if self.clock() >= deadline:
                outcome.is_partial = True
                logger.info(
                    f"Time budget exhausted for {task.seller_key}/{task.seller_id}, "
                    f"stopping at checkpoint"
                )
                break

        await self.task_store.complete(
            task.seller_key, task.seller_id, task.attempt, cursor, outcome.is_partial
        )
        outcome.status = TaskStatus.SUCCEEDED.value
        logger.info(
            f"Task {task.seller_key}/{task.seller_id} succeeded: "
            f"{outcome.records_ingested} records, {outcome.events_published} events"
            f"{' (partial)' if outcome.is_partial else ''}"
        )

    async def _fail(self, task: Task, outcome: TaskOutcome, error: str):
        outcome.error = error
        try:
            await self.task_store.fail(task.seller_key, task.seller_id, task.attempt, error)
            outcome.status = TaskStatus.FAILED.value
        except TaskConflictError as e:
            logger.warning(
                f"Could not record failure of {task.seller_key}/{task.seller_id}: {e.message}"
            )
            outcome.status = TaskOutcome.SUPERSEDED
        except PipelineError as e:
            # The Task stays RUNNING until it goes stale and a later cycle supersedes it
            logger.error(
                f"Could not record failure of {task.seller_key}/{task.seller_id}: {e.message}"
            )
            outcome.status = TaskStatus.FAILED.value
