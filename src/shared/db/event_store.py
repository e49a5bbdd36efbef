"""
Shipment Event Store: durable, deduplicated shipment financial events.
"""

from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shared.db.database import Database
from shared.db.models import ShipmentFinancialEventRecord
from shared.schemas.dto import ShipmentFinancialEvent
from shared.utils.helpers import utc_now
from shared.utils.logger import logger

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class ShipmentEventStore:
    """
    Idempotent upserts keyed by (amazon_order_id, seller_id).

    A re-delivered record never creates a second row and never rewrites the
    stored amounts; it only refreshes last_seen_at while the row's domain event
    is still unpublished.
    """

    def __init__(self, database: Database):
        self.database = database

    def _insert(self):
        try:
            return _DIALECT_INSERTS[self.database.dialect_name](
                ShipmentFinancialEventRecord
            )
        except KeyError:
            raise NotImplementedError(
                f"Unsupported dialect for conditional upserts: {self.database.dialect_name}"
            )

    async def upsert_events(
        self, events: List[ShipmentFinancialEvent]
    ) -> List[ShipmentFinancialEvent]:
        """
        Upsert a batch of events in a single transaction.

        Uses INSERT ... ON CONFLICT DO UPDATE ... WHERE published_at IS NULL so
        that RETURNING yields exactly the rows that were just inserted or that
        are still waiting for their domain event.

        Args:
            events: Normalized events of one upstream page

        Returns:
            Stored events whose domain event still has to be published
        """
        if not events:
            return []

        await self.database.initialize()
        now = utc_now()
        pending = []

        unique = {}
        for event in events:
            unique.setdefault(event.identity, event)

        async with self.database.transaction() as conn:
            for event in unique.values():
                stmt = self._insert().values(
                    amazon_order_id=event.amazon_order_id,
                    seller_id=event.seller_id,
                    event_type=event.event_type,
                    seller_order_id=event.seller_order_id,
                    marketplace_name=event.marketplace_name,
                    posted_date=event.posted_date,
                    currency_code=event.currency_code,
                    charge_total=event.charge_total,
                    fee_total=event.fee_total,
                    promotion_total=event.promotion_total,
                    tax_withheld_total=event.tax_withheld_total,
                    net_amount=event.net_amount,
                    payload=event.payload,
                    ingested_at=now,
                    last_seen_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["amazon_order_id", "seller_id"],
                    set_={"last_seen_at": now},
                    where=ShipmentFinancialEventRecord.published_at.is_(None),
                ).returning(*ShipmentFinancialEventRecord.__table__.columns)

                row = (await conn.execute(stmt)).first()
                if row is not None:
                    pending.append(ShipmentFinancialEvent.from_row(row))

        logger.info(
            f"Upserted {len(events)} shipment events, {len(pending)} awaiting publication"
        )
        return pending

    async def mark_published(self, events: Iterable[ShipmentFinancialEvent]) -> int:
        """
        Record that the domain events of the given rows were accepted by the bus.

        Returns:
            Number of rows updated
        """
        now = utc_now()
        updated = 0
        async with self.database.transaction() as conn:
            for event in events:
                result = await conn.execute(
                    update(ShipmentFinancialEventRecord)
                    .where(
                        ShipmentFinancialEventRecord.amazon_order_id
                        == event.amazon_order_id,
                        ShipmentFinancialEventRecord.seller_id == event.seller_id,
                        ShipmentFinancialEventRecord.published_at.is_(None),
                    )
                    .values(published_at=now)
                )
                updated += result.rowcount
        return updated

    async def get(
        self, amazon_order_id: str, seller_id: str
    ) -> Optional[ShipmentFinancialEvent]:
        async with self.database.session() as session:
            record = await session.get(
                ShipmentFinancialEventRecord, (amazon_order_id, seller_id)
            )
            return ShipmentFinancialEvent.from_row(record) if record else None

    async def count(self, seller_id: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ShipmentFinancialEventRecord)
        if seller_id is not None:
            query = query.where(ShipmentFinancialEventRecord.seller_id == seller_id)

        async with self.database.session() as session:
            return (await session.execute(query)).scalar_one()

    async def count_unpublished(self, seller_id: Optional[str] = None) -> int:
        query = (
            select(func.count())
            .select_from(ShipmentFinancialEventRecord)
            .where(ShipmentFinancialEventRecord.published_at.is_(None))
        )
        if seller_id is not None:
            query = query.where(ShipmentFinancialEventRecord.seller_id == seller_id)

        async with self.database.session() as session:
            return (await session.execute(query)).scalar_one()
