"""
Work queues that hand a WorkerInvocation from the Dispatcher to a Worker.

In AWS the queue is an asynchronous Lambda invocation; locally it is an
asyncio.Queue drained by a small pool of in-process workers.
"""

import asyncio
import json
from typing import Awaitable, Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.schemas.dto import WorkerInvocation
from shared.utils.configs import aws_configs
from shared.utils.errors import DispatchError
from shared.utils.logger import logger


class LambdaTaskQueue:
    """Fire-and-forget invocation of the Worker Lambda."""

    def __init__(self, lambda_client=None, function_name: Optional[str] = None):
        self.lambda_client = lambda_client or boto3.client(
            "lambda", region_name=aws_configs["region"]
        )
        self.function_name = function_name or aws_configs["worker_function_name"]

    async def enqueue(self, invocation: WorkerInvocation):
        """
        Raises:
            DispatchError: If Lambda does not accept the invocation
        """
        try:
            response = await asyncio.to_thread(
                self.lambda_client.invoke,
                FunctionName=self.function_name,
                InvocationType="Event",
                Payload=json.dumps(invocation.to_payload()).encode("utf-8"),
            )
        except (ClientError, BotoCoreError) as e:
            raise DispatchError(
                message=f"Failed to invoke {self.function_name} for "
                f"{invocation.seller_key}/{invocation.seller_id}: {str(e)}"
            )

        status = response.get("StatusCode")
        if status != 202:
            raise DispatchError(
                message=f"{self.function_name} answered {status} for "
                f"{invocation.seller_key}/{invocation.seller_id}"
            )


class LocalTaskQueue:
    """
    In-process queue for local runs and tests.

    start() spawns `concurrency` consumers that pass each invocation to
    handler; handler errors are logged and the consumer moves on.
    """

    def __init__(
        self,
        handler: Optional[Callable[[WorkerInvocation], Awaitable]] = None,
        concurrency: int = 4,
    ):
        self.handler = handler
        self.concurrency = concurrency
        self.queue: asyncio.Queue = asyncio.Queue()
        self._consumers: List[asyncio.Task] = []

    async def enqueue(self, invocation: WorkerInvocation):
        await self.queue.put(invocation)

    async def _consume(self):
        while True:
            invocation = await self.queue.get()
            try:
                await self.handler(invocation)
            except Exception as e:
                logger.error(
                    f"Local worker failed for "
                    f"{invocation.seller_key}/{invocation.seller_id}: {str(e)}"
                )
            finally:
                self.queue.task_done()

    def start(self):
        if self.handler is None:
            raise ValueError("LocalTaskQueue needs a handler to start consumers")
        if not self._consumers:
            self._consumers = [
                asyncio.create_task(self._consume()) for _ in range(self.concurrency)
            ]

    async def join(self):
        """Wait until every enqueued invocation has been handled."""
        await self.queue.join()

    async def stop(self):
        for consumer in self._consumers:
            consumer.cancel()
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers = []
