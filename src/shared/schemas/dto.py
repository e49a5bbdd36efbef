"""
Data Transfer Objects (DTOs) for the application.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class TaskStatus(str, Enum):
    """Lifecycle of a per-seller dispatch unit."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


ACTIVE_STATUSES = (TaskStatus.PENDING.value, TaskStatus.RUNNING.value)
TERMINAL_STATUSES = (TaskStatus.SUCCEEDED.value, TaskStatus.FAILED.value)


@dataclass(frozen=True)
class SellerCredential:
    """
    One seller account to ingest, as read from the credential store.

    Attributes:
        seller_key (str): Logical grouping (tenant) the seller belongs to.
        seller_id (str): Marketplace seller identifier.
        refresh_token (str): Opaque LWA refresh token for the seller.
        role_arn (Optional[str]): Role to assume for upstream calls; None means
            the deployment-wide role.
        region (str): AWS region of the seller's marketplace endpoint.
    """

    seller_key: str
    seller_id: str
    refresh_token: str = field(repr=False)
    role_arn: Optional[str] = None
    region: str = "us-east-1"


@dataclass(frozen=True)
class ScopedCredentials:
    """Temporary AWS credentials returned by role assumption."""

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expiration: Optional[datetime] = None


@dataclass
class Task:
    """
    Snapshot of one row of the Task Store.

    Attributes:
        seller_key (str): Tenant part of the identity.
        seller_id (str): Seller part of the identity.
        status (TaskStatus): Current lifecycle state.
        attempt (int): Dispatch counter, incremented every time a new cycle
            supersedes the row. Used to fence out stale Workers.
        last_cursor (Optional[str]): Opaque resume pointer into the upstream stream.
        is_partial (bool): True when the last run stopped on its time budget.
        records_ingested (int): Records checkpointed during the current attempt.
        last_error (Optional[str]): Error recorded by the last failed run.
    """

    seller_key: str
    seller_id: str
    status: TaskStatus
    attempt: int = 1
    last_cursor: Optional[str] = None
    is_partial: bool = False
    records_ingested: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status.value in ACTIVE_STATUSES

    @classmethod
    def from_row(cls, row: Any) -> "Task":
        """Build a Task from a Core result row or an ORM record."""
        return cls(
            seller_key=row.seller_key,
            seller_id=row.seller_id,
            status=TaskStatus(row.status),
            attempt=row.attempt,
            last_cursor=row.last_cursor,
            is_partial=bool(row.is_partial),
            records_ingested=row.records_ingested or 0,
            last_error=row.last_error,
            created_at=row.created_at,
            updated_at=row.updated_at,
            started_at=row.started_at,
            finished_at=row.finished_at,
        )


@dataclass
class ShipmentFinancialEvent:
    """
    One normalized shipment financial event.

    Amounts are summed per category across the order-level and item-level
    lists of the upstream record; net_amount is their total.
    """

    amazon_order_id: str
    seller_id: str
    event_type: str
    posted_date: Optional[datetime]
    currency_code: Optional[str] = None
    seller_order_id: Optional[str] = None
    marketplace_name: Optional[str] = None
    charge_total: Decimal = Decimal("0")
    fee_total: Decimal = Decimal("0")
    promotion_total: Decimal = Decimal("0")
    tax_withheld_total: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")
    payload: Dict[str, Any] = field(default_factory=dict)
    ingested_at: Optional[datetime] = None

    @property
    def identity(self) -> tuple:
        return (self.amazon_order_id, self.seller_id)

    @classmethod
    def from_row(cls, row: Any) -> "ShipmentFinancialEvent":
        return cls(
            amazon_order_id=row.amazon_order_id,
            seller_id=row.seller_id,
            event_type=row.event_type,
            posted_date=row.posted_date,
            currency_code=row.currency_code,
            seller_order_id=row.seller_order_id,
            marketplace_name=row.marketplace_name,
            charge_total=row.charge_total,
            fee_total=row.fee_total,
            promotion_total=row.promotion_total,
            tax_withheld_total=row.tax_withheld_total,
            net_amount=row.net_amount,
            payload=row.payload or {},
            ingested_at=row.ingested_at,
        )


@dataclass(frozen=True)
class DomainEvent:
    """
    Notification that a ShipmentFinancialEvent was durably stored.

    Carries identity only; consumers read amounts from the event store.
    """

    amazon_order_id: str
    seller_id: str
    event_type: str
    occurred_at: Optional[datetime]

    @classmethod
    def from_shipment_event(cls, event: ShipmentFinancialEvent) -> "DomainEvent":
        return cls(
            amazon_order_id=event.amazon_order_id,
            seller_id=event.seller_id,
            event_type=event.event_type,
            occurred_at=event.posted_date,
        )

    def to_detail(self) -> Dict[str, Optional[str]]:
        return {
            "amazonOrderId": self.amazon_order_id,
            "sellerId": self.seller_id,
            "eventType": self.event_type,
            "occurredAt": self.occurred_at.isoformat() if self.occurred_at else None,
        }


@dataclass
class FinancialEventsPage:
    """
    One page read from the upstream finances API.

    Attributes:
        records (List[dict]): Raw shipment event records.
        next_cursor (Optional[str]): Cursor to resume after this page.
        has_more (bool): Whether another page is available right now.
    """

    records: List[Dict[str, Any]]
    next_cursor: Optional[str]
    has_more: bool = False


@dataclass(frozen=True)
class WorkerInvocation:
    """Message handed from the Dispatcher to a Worker through the work queue."""

    seller_key: str
    seller_id: str
    attempt: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sellerKey": self.seller_key,
            "sellerId": self.seller_id,
            "attempt": self.attempt,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WorkerInvocation":
        """
        Parse a Worker payload.

        Raises:
            ValueError: If sellerKey or sellerId is missing or attempt is not an integer
        """
        seller_key = payload.get("sellerKey")
        seller_id = payload.get("sellerId")
        if not seller_key or not seller_id:
            raise ValueError("sellerKey and sellerId are required")
        attempt = payload.get("attempt")
        return cls(
            seller_key=str(seller_key),
            seller_id=str(seller_id),
            attempt=int(attempt) if attempt is not None else None,
        )


@dataclass
class TaskOutcome:
    """Result of one Worker run, returned to the Lambda handler and the CLI."""

    seller_key: str
    seller_id: str
    status: str
    records_ingested: int = 0
    events_published: int = 0
    cursor: Optional[str] = None
    is_partial: bool = False
    error: Optional[str] = None

    SKIPPED = "SKIPPED"
    SUPERSEDED = "SUPERSEDED"
