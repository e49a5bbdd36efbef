"""
Entity models for the database.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from . import Base

TASK_TABLE_NAME = "sp_api_task"
SHIPMENT_EVENT_TABLE_NAME = "amz_sp_api_financial_shipment_event"


class TaskRecord(Base):
    """
    Per-seller dispatch ledger.

    One row per (seller_key, seller_id). A new scheduling cycle supersedes a
    terminal row in place, so the row doubles as the resume point
    (last_cursor) and the audit trail of the latest attempt. Rows are never
    deleted.

    Attributes:
        seller_key (str): Tenant grouping, first half of the primary key.
        seller_id (str): Marketplace seller id, second half of the primary key.
        status (str): One of PENDING, RUNNING, SUCCEEDED, FAILED.
        attempt (int): Incremented by every dispatch; fences out stale Workers.
        last_cursor (str): Opaque upstream cursor at the last durable checkpoint.
        is_partial (bool): Last run stopped on its time budget.
        records_ingested (int): Records checkpointed by the current attempt.
        last_error (str): Error recorded by the last failed run.
    """

    __tablename__ = TASK_TABLE_NAME

    seller_key = Column(String(128), primary_key=True)
    seller_id = Column(String(64), primary_key=True)
    status = Column(String(16), nullable=False)
    attempt = Column(Integer, nullable=False, default=1)
    last_cursor = Column(Text)
    is_partial = Column(Boolean, nullable=False, default=False)
    records_ingested = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("ix_sp_api_task_status_updated", "status", "updated_at"),)

    def __repr__(self) -> str:
        return (
            f"<TaskRecord {self.seller_key}/{self.seller_id} "
            f"status={self.status} attempt={self.attempt}>"
        )


class ShipmentFinancialEventRecord(Base):
    """
    Normalized shipment financial event, unique per (amazon_order_id, seller_id).

    published_at stays NULL until the matching domain event was accepted by
    the event bus; rows in that state are handed back by the upsert so that an
    interrupted run republishes them.
    """

    __tablename__ = SHIPMENT_EVENT_TABLE_NAME

    amazon_order_id = Column(String(64), primary_key=True)
    seller_id = Column(String(64), primary_key=True)
    event_type = Column(String(64), nullable=False)
    seller_order_id = Column(String(64))
    marketplace_name = Column(String(64))
    posted_date = Column(DateTime(timezone=True))
    currency_code = Column(String(3))
    charge_total = Column(Numeric(18, 2), nullable=False, default=0)
    fee_total = Column(Numeric(18, 2), nullable=False, default=0)
    promotion_total = Column(Numeric(18, 2), nullable=False, default=0)
    tax_withheld_total = Column(Numeric(18, 2), nullable=False, default=0)
    net_amount = Column(Numeric(18, 2), nullable=False, default=0)
    payload = Column(JSON)
    ingested_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    published_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_shipment_event_seller_posted", "seller_id", "posted_date"),
        Index("ix_shipment_event_unpublished", "seller_id", "published_at"),
    )
