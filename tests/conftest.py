"""
Shared fixtures and in-memory collaborators for the pipeline tests.

The stores run against a real SQLite database (aiosqlite) so that the
conditional writes are exercised as SQL; AWS, Redis and the upstream API are
replaced by the small fakes below.
"""

from typing import Dict, List, Optional, Tuple

import pytest

from shared.db.database import Database
from shared.db.event_store import ShipmentEventStore
from shared.db.task_store import TaskStore
from shared.schemas.dto import (
    FinancialEventsPage,
    ScopedCredentials,
    SellerCredential,
    WorkerInvocation,
)
from shared.utils.errors import AccessDeniedError, DispatchError, EventBusError, NotFoundError
from task_executor.service import TaskExecutor


def make_record(
    order_id: str,
    charge: str = "10.00",
    fee: str = "-1.50",
    posted: str = "2024-05-01T10:00:00Z",
    currency: str = "USD",
) -> dict:
    """Raw ShipmentEventList entry as returned by the finances API."""
    return {
        "AmazonOrderId": order_id,
        "SellerOrderId": f"S-{order_id}",
        "MarketplaceName": "Amazon.com",
        "PostedDate": posted,
        "ShipmentItemList": [
            {
                "SellerSKU": "SKU-1",
                "QuantityShipped": 1,
                "ItemChargeList": [
                    {
                        "ChargeType": "Principal",
                        "ChargeAmount": {"CurrencyCode": currency, "CurrencyAmount": charge},
                    }
                ],
                "ItemFeeList": [
                    {
                        "FeeType": "Commission",
                        "FeeAmount": {"CurrencyCode": currency, "CurrencyAmount": fee},
                    }
                ],
            }
        ],
    }


class FakeCredentialStore:
    def __init__(self, sellers: List[SellerCredential], page_size: int = 2):
        self.sellers = sellers
        self.page_size = page_size
        self.missing = set()

    async def iter_seller_pages(self, page_size: int = 100):
        for start in range(0, len(self.sellers), self.page_size):
            yield self.sellers[start : start + self.page_size]

    async def get(self, seller_key: str, seller_id: str) -> SellerCredential:
        for seller in self.sellers:
            if (seller.seller_key, seller.seller_id) == (seller_key, seller_id):
                if seller.seller_id in self.missing:
                    break
                return seller
        raise NotFoundError(message=f"No credential for seller {seller_key}/{seller_id}")


class FakeRoleService:
    def __init__(self):
        self.denied = set()
        self.calls = []

    async def assume(self, role_arn, session_name):
        self.calls.append((role_arn, session_name))
        if role_arn in self.denied:
            raise AccessDeniedError(message=f"Cannot assume {role_arn}")
        return ScopedCredentials("AKIA", "secret", "token")


class FakeFinancesClient:
    """
    Serves each seller's records one page at a time.

    The cursor is the index of the next record; fail_at maps a seller id to
    (index, exception) and raises once a page would start at or after index.
    """

    def __init__(self, page_size: int = 1):
        self.page_size = page_size
        self.records: Dict[str, List[dict]] = {}
        self.fail_at: Dict[str, Tuple[int, Exception]] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def fetch_page(self, credential, scoped, cursor):
        self.calls.append((credential.seller_id, cursor))
        start = int(cursor or 0)
        failure = self.fail_at.get(credential.seller_id)
        if failure and start >= failure[0]:
            raise failure[1]

        records = self.records.get(credential.seller_id, [])
        page = records[start : start + self.page_size]
        end = start + len(page)
        return FinancialEventsPage(
            records=page, next_cursor=str(end), has_more=end < len(records)
        )


class FakePublisher:
    def __init__(self):
        self.events = []
        self.fail = False

    async def publish(self, events):
        events = list(events)
        if self.fail:
            raise EventBusError(message="bus unavailable")
        self.events.extend(events)
        return len(events)


class FakeLimiter:
    def __init__(self, allow: bool = True):
        self.allow = allow
        self.calls = []

    async def acquire(self, seller_id, operation="listFinancialEvents"):
        self.calls.append((seller_id, operation))
        return self.allow


class RecordingQueue:
    def __init__(self):
        self.invocations: List[WorkerInvocation] = []
        self.reject = set()

    async def enqueue(self, invocation: WorkerInvocation):
        if invocation.seller_id in self.reject:
            raise DispatchError(message=f"queue rejected {invocation.seller_id}")
        self.invocations.append(invocation)


class StepClock:
    """Monotonic clock that advances by step every time it is read."""

    def __init__(self, step: float = 1.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def seller(seller_id: str, seller_key: str = "tenant-a") -> SellerCredential:
    return SellerCredential(
        seller_key=seller_key,
        seller_id=seller_id,
        refresh_token=f"Atzr|{seller_id}",
        role_arn="arn:aws:iam::123456789012:role/SpApiRole",
    )


@pytest.fixture
async def database(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'finances.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def task_store(database):
    return TaskStore(database)


@pytest.fixture
def event_store(database):
    return ShipmentEventStore(database)


@pytest.fixture
def sellers():
    return [seller("S1"), seller("S2"), seller("S3")]


@pytest.fixture
def credential_store(sellers):
    return FakeCredentialStore(sellers)


@pytest.fixture
def role_service():
    return FakeRoleService()


@pytest.fixture
def finances_client():
    return FakeFinancesClient()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def executor(
    task_store, event_store, credential_store, role_service, finances_client, publisher
):
    return TaskExecutor(
        task_store=task_store,
        event_store=event_store,
        credential_store=credential_store,
        role_service=role_service,
        finances_client=finances_client,
        publisher=publisher,
        time_budget_seconds=600,
    )
