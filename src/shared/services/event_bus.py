"""
Publishing of domain events to EventBridge.
"""

import asyncio
import json
from typing import Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.schemas.dto import DomainEvent
from shared.utils.configs import aws_configs
from shared.utils.errors import EventBusError
from shared.utils.logger import logger

DETAIL_TYPE = "ShipmentFinancialEventIngested"

# put_events accepts at most 10 entries per call
MAX_ENTRIES_PER_CALL = 10


class EventBridgePublisher:
    """Helper class for publishing DomainEvents to an EventBridge bus."""

    def __init__(
        self,
        events_client=None,
        event_bus_name: Optional[str] = None,
        source: Optional[str] = None,
    ):
        self.events_client = events_client or boto3.client(
            "events", region_name=aws_configs["region"]
        )
        self.event_bus_name = event_bus_name or aws_configs["event_bus_name"]
        self.source = source or aws_configs["event_source"]

    def _entry(self, event: DomainEvent) -> dict:
        return {
            "Source": self.source,
            "DetailType": DETAIL_TYPE,
            "Detail": json.dumps(event.to_detail()),
            "EventBusName": self.event_bus_name,
        }

    async def publish(self, events: Iterable[DomainEvent]) -> int:
        """
        Publish events, ten per put_events call.

        Args:
            events: Domain events to publish

        Returns:
            Number of events accepted by the bus

        Raises:
            EventBusError: If a call fails or any entry is rejected. Chunks
                sent before the failure stay published; consumers must
                tolerate the duplicates a retry will produce.
        """
        events: List[DomainEvent] = list(events)
        published = 0

        for start in range(0, len(events), MAX_ENTRIES_PER_CALL):
            chunk = events[start : start + MAX_ENTRIES_PER_CALL]
            try:
                response = await asyncio.to_thread(
                    self.events_client.put_events,
                    Entries=[self._entry(event) for event in chunk],
                )
            except (ClientError, BotoCoreError) as e:
                raise EventBusError(message=f"put_events failed: {str(e)}")

            failed = response.get("FailedEntryCount", 0)
            if failed:
                errors = {
                    entry.get("ErrorCode")
                    for entry in response.get("Entries", [])
                    if entry.get("ErrorCode")
                }
                raise EventBusError(
                    message=f"{failed} of {len(chunk)} events rejected by "
                    f"{self.event_bus_name}: {', '.join(sorted(errors))}"
                )
            published += len(chunk)

        if published:
            logger.info(f"Published {published} events to {self.event_bus_name}")
        return published
