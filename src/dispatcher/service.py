"""
Service that fans one scheduling cycle out into per-seller Tasks.
"""

import asyncio
import time
from datetime import timedelta
from typing import Callable, Optional, Protocol

from shared.db.task_store import TaskStore
from shared.schemas.dto import SellerCredential, WorkerInvocation
from shared.services.credential_store import SellerCredentialStore
from shared.utils.configs import dispatcher_configs
from shared.utils.errors import PipelineError, TaskConflictError
from shared.utils.logger import logger
from shared.utils.types import DispatchSummary


class TaskQueue(Protocol):
    async def enqueue(self, invocation: WorkerInvocation): ...


class Dispatcher:
    """
    Enumerates sellers and hands one Task per seller to the work queue.

    The Task Store's conditional create is the only guard against dispatching
    a seller twice: a seller whose previous Task is still active is skipped,
    and nothing the Dispatcher does is retried within the cycle.
    """

    def __init__(
        self,
        credential_store: SellerCredentialStore,
        task_store: TaskStore,
        task_queue: TaskQueue,
        time_budget_seconds: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        page_size: Optional[int] = None,
        stale_task_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.credential_store = credential_store
        self.task_store = task_store
        self.task_queue = task_queue
        self.time_budget_seconds = (
            time_budget_seconds or dispatcher_configs["time_budget_seconds"]
        )
        self.max_concurrency = max_concurrency or dispatcher_configs["max_concurrency"]
        self.page_size = page_size or dispatcher_configs["page_size"]
        stale_seconds = (
            dispatcher_configs["stale_task_seconds"]
            if stale_task_seconds is None
            else stale_task_seconds
        )
        self.stale_after = timedelta(seconds=stale_seconds) if stale_seconds else None
        self.clock = clock

    async def run_cycle(self) -> DispatchSummary:
        """
        Run one dispatch cycle.

        Each page of sellers is drained before the next one is read, and a
        seller whose turn comes after the deadline is deferred without touching
        the Task Store, so the cycle overruns its budget by at most one
        in-flight dispatch per concurrency slot.

        Returns:
            Counters for sellers seen, dispatched, skipped because a Task was
            active, failed, and deferred to the next cycle by the time budget.
            enumeration_incomplete is set when the credential store stopped
            answering before every seller was read.
        """
        summary: DispatchSummary = {
            "sellers_seen": 0,
            "dispatched": 0,
            "skipped_active": 0,
            "failed": 0,
            "deferred": 0,
            "enumeration_incomplete": False,
        }
        deadline = self.clock() + self.time_budget_seconds
        semaphore = asyncio.Semaphore(self.max_concurrency)

        try:
            async for sellers in self.credential_store.iter_seller_pages(self.page_size):
                summary["sellers_seen"] += len(sellers)
                if self.clock() >= deadline:
                    summary["deferred"] += len(sellers)
                    logger.warning(
                        "Dispatch time budget exhausted, remaining sellers wait for the next cycle"
                    )
                    break

                results = await asyncio.gather(
                    *[self._dispatch(seller, semaphore, summary, deadline) for seller in sellers],
                    return_exceptions=True,
                )
                for result in results:
                    if isinstance(result, Exception):
                        logger.error(f"Unexpected dispatch error: {str(result)}")
                        summary["failed"] += 1
        except PipelineError as e:
            summary["enumeration_incomplete"] = True
            logger.error(f"Stopped enumerating sellers: {e.error_type.value}: {e.message}")

        logger.info(f"Dispatch cycle finished: {summary}")
        return summary

    async def _dispatch(
        self,
        seller: SellerCredential,
        semaphore: asyncio.Semaphore,
        summary: DispatchSummary,
        deadline: float,
    ):
        seller_ref = f"{seller.seller_key}/{seller.seller_id}"
        async with semaphore:
            if self.clock() >= deadline:
                summary["deferred"] += 1
                return

            try:
                task = await self.task_store.try_create_pending(
                    seller.seller_key, seller.seller_id, stale_after=self.stale_after
                )
            except TaskConflictError:
                logger.info(f"Skipping {seller_ref}: task still active")
                summary["skipped_active"] += 1
                return
            except PipelineError as e:
                logger.error(f"Could not create task for {seller_ref}: {e.message}")
                summary["failed"] += 1
                return

            invocation = WorkerInvocation(
                seller_key=seller.seller_key,
                seller_id=seller.seller_id,
                attempt=task.attempt,
            )
            try:
                await self.task_queue.enqueue(invocation)
            except PipelineError as e:
                logger.error(f"Could not enqueue {seller_ref}: {e.message}")
                summary["failed"] += 1
                await self._release(task.seller_key, task.seller_id, task.attempt, e)
                return

            summary["dispatched"] += 1
            logger.info(f"Dispatched {seller_ref} attempt {task.attempt}")

    async def _release(
        self, seller_key: str, seller_id: str, attempt: int, error: PipelineError
    ):
        """Close a Task that never reached a Worker so the next cycle can retry it."""
        try:
            await self.task_store.fail(seller_key, seller_id, attempt, error.describe())
        except PipelineError as e:
            logger.error(
                f"Could not release undispatched task {seller_key}/{seller_id}: {e.message}"
            )
