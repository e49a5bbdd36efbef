"""
Tests for the AWS, Redis and HTTP collaborators, with their clients mocked.
"""

import json
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from botocore.exceptions import ClientError
from conftest import seller

from shared.cache.request_limiter import RequestLimiter
from shared.schemas.dto import DomainEvent, ScopedCredentials, WorkerInvocation
from shared.services.credential_store import SellerCredentialStore, parse_seller_item
from shared.services.event_bus import EventBridgePublisher
from shared.services.finances_client import (
    FinancesClient,
    decode_cursor,
    encode_cursor,
    raise_for_status,
)
from shared.services.role_service import RoleService
from shared.services.task_queue import LambdaTaskQueue
from shared.utils.errors import (
    AccessDeniedError,
    DispatchError,
    EventBusError,
    NotFoundError,
    RateLimitedError,
    TransientError,
    UpstreamError,
)
from shared.utils.helpers import format_timestamp, utc_now


def _client_error(code, operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _item(seller_id, **extra):
    item = {"sellerKey": "tenant-a", "sellerId": seller_id, "refreshToken": "Atzr|x"}
    item.update(extra)
    return item


class TestSellerCredentialStore:
    async def test_iterates_scan_pages(self):
        table = Mock()
        table.scan.side_effect = [
            {"Items": [_item("S1"), _item("S2")], "LastEvaluatedKey": {"sellerId": "S2"}},
            {"Items": [_item("S3", roleArn="arn:aws:iam::1:role/Custom")]},
        ]
        store = SellerCredentialStore(table=table)

        pages = [page async for page in store.iter_seller_pages(page_size=2)]

        assert [[s.seller_id for s in page] for page in pages] == [["S1", "S2"], ["S3"]]
        assert pages[1][0].role_arn == "arn:aws:iam::1:role/Custom"
        second_call = table.scan.call_args_list[1].kwargs
        assert second_call == {"Limit": 2, "ExclusiveStartKey": {"sellerId": "S2"}}

    async def test_skips_incomplete_items(self):
        table = Mock()
        table.scan.return_value = {"Items": [_item("S1"), {"sellerKey": "tenant-a"}]}
        store = SellerCredentialStore(table=table)

        sellers = await store.list_sellers()

        assert [s.seller_id for s in sellers] == ["S1"]

    async def test_scan_throttling(self):
        table = Mock()
        table.scan.side_effect = _client_error("ProvisionedThroughputExceededException")
        store = SellerCredentialStore(table=table)

        with pytest.raises(RateLimitedError):
            await store.list_sellers()

    async def test_get_by_composite_key(self):
        table = Mock()
        table.get_item.return_value = {"Item": _item("S1")}
        store = SellerCredentialStore(table=table)

        credential = await store.get("tenant-a", "S1")

        assert credential.refresh_token == "Atzr|x"
        table.get_item.assert_called_once_with(
            Key={"sellerKey": "tenant-a", "sellerId": "S1"}
        )

    async def test_get_missing_seller(self):
        table = Mock()
        table.get_item.return_value = {}
        store = SellerCredentialStore(table=table)

        with pytest.raises(NotFoundError):
            await store.get("tenant-a", "S9")

    def test_refresh_token_is_not_in_repr(self):
        assert "Atzr" not in repr(parse_seller_item(_item("S1")))


class TestRoleService:
    def _response(self, minutes=60):
        return {
            "Credentials": {
                "AccessKeyId": "ASIA1",
                "SecretAccessKey": "secret",
                "SessionToken": "token",
                "Expiration": utc_now() + timedelta(minutes=minutes),
            }
        }

    async def test_assume_caches_until_near_expiry(self):
        sts = Mock()
        sts.assume_role.return_value = self._response()
        service = RoleService(sts_client=sts)

        first = await service.assume("arn:aws:iam::1:role/R", "tenant-a-S1")
        second = await service.assume("arn:aws:iam::1:role/R", "tenant-a-S2")

        assert first is second
        assert first.access_key_id == "ASIA1"
        assert sts.assume_role.call_count == 1

    async def test_expiring_credentials_are_refreshed(self):
        sts = Mock()
        sts.assume_role.return_value = self._response(minutes=2)
        service = RoleService(sts_client=sts)

        await service.assume("arn:aws:iam::1:role/R", "s")
        await service.assume("arn:aws:iam::1:role/R", "s")

        assert sts.assume_role.call_count == 2

    @pytest.mark.parametrize(
        "code, expected",
        [
            ("AccessDenied", AccessDeniedError),
            ("Throttling", RateLimitedError),
            ("InternalFailure", TransientError),
        ],
    )
    async def test_error_mapping(self, code, expected):
        sts = Mock()
        sts.assume_role.side_effect = _client_error(code, "AssumeRole")
        service = RoleService(sts_client=sts)

        with pytest.raises(expected):
            await service.assume("arn:aws:iam::1:role/R", "s")

    async def test_missing_role(self):
        with pytest.raises(NotFoundError):
            await RoleService(sts_client=Mock()).assume(None, "s")


class TestEventBridgePublisher:
    def _events(self, count):
        return [
            DomainEvent(f"O-{index}", "S1", "ShipmentEvent", utc_now())
            for index in range(count)
        ]

    async def test_publishes_in_chunks_of_ten(self):
        client = Mock()
        client.put_events.return_value = {"FailedEntryCount": 0, "Entries": []}
        publisher = EventBridgePublisher(
            events_client=client, event_bus_name="finances", source="test.source"
        )

        published = await publisher.publish(self._events(23))

        assert published == 23
        sizes = [len(c.kwargs["Entries"]) for c in client.put_events.call_args_list]
        assert sizes == [10, 10, 3]
        entry = client.put_events.call_args_list[0].kwargs["Entries"][0]
        assert entry["DetailType"] == "ShipmentFinancialEventIngested"
        assert entry["Source"] == "test.source"
        assert entry["EventBusName"] == "finances"
        assert set(json.loads(entry["Detail"])) == {
            "amazonOrderId",
            "sellerId",
            "eventType",
            "occurredAt",
        }

    async def test_rejected_entries_raise(self):
        client = Mock()
        client.put_events.return_value = {
            "FailedEntryCount": 1,
            "Entries": [{"EventId": "1"}, {"ErrorCode": "InternalFailure"}],
        }
        publisher = EventBridgePublisher(events_client=client, event_bus_name="finances")

        with pytest.raises(EventBusError):
            await publisher.publish(self._events(2))

    async def test_client_error_raises(self):
        client = Mock()
        client.put_events.side_effect = _client_error("ResourceNotFoundException")
        publisher = EventBridgePublisher(events_client=client, event_bus_name="finances")

        with pytest.raises(EventBusError):
            await publisher.publish(self._events(1))

    async def test_nothing_to_publish(self):
        client = Mock()
        publisher = EventBridgePublisher(events_client=client, event_bus_name="finances")

        assert await publisher.publish([]) == 0
        client.put_events.assert_not_called()


class TestLambdaTaskQueue:
    async def test_invokes_worker_asynchronously(self):
        client = Mock()
        client.invoke.return_value = {"StatusCode": 202}
        queue = LambdaTaskQueue(lambda_client=client, function_name="Worker")

        await queue.enqueue(WorkerInvocation("tenant-a", "S1", 3))

        kwargs = client.invoke.call_args.kwargs
        assert kwargs["FunctionName"] == "Worker"
        assert kwargs["InvocationType"] == "Event"
        assert json.loads(kwargs["Payload"]) == {
            "sellerKey": "tenant-a",
            "sellerId": "S1",
            "attempt": 3,
        }

    async def test_rejected_invocation(self):
        client = Mock()
        client.invoke.side_effect = _client_error("TooManyRequestsException", "Invoke")
        queue = LambdaTaskQueue(lambda_client=client, function_name="Worker")

        with pytest.raises(DispatchError):
            await queue.enqueue(WorkerInvocation("tenant-a", "S1", 1))

    async def test_unexpected_status(self):
        client = Mock()
        client.invoke.return_value = {"StatusCode": 200}
        queue = LambdaTaskQueue(lambda_client=client, function_name="Worker")

        with pytest.raises(DispatchError):
            await queue.enqueue(WorkerInvocation("tenant-a", "S1", 1))


class TestRequestLimiter:
    def _redis(self, count):
        redis_client = MagicMock()
        redis_client.pipeline.return_value.execute.return_value = [count, True]
        return redis_client

    async def test_allows_within_window(self):
        redis_client = self._redis(1)
        limiter = RequestLimiter(redis_client=redis_client, max_requests=2, enabled=True)

        assert await limiter.acquire("S1") is True
        pipe = redis_client.pipeline.return_value
        key = pipe.incr.call_args.args[0]
        assert ":listFinancialEvents:S1:" in key
        pipe.expire.assert_called_once_with(key, limiter.window_seconds)

    async def test_denies_over_limit(self):
        limiter = RequestLimiter(redis_client=self._redis(3), max_requests=2, enabled=True)

        assert await limiter.acquire("S1") is False

    async def test_fails_open_when_redis_errors(self):
        redis_client = MagicMock()
        redis_client.pipeline.return_value.execute.side_effect = ConnectionError("down")
        limiter = RequestLimiter(redis_client=redis_client, enabled=True)

        assert await limiter.acquire("S1") is True

    async def test_disabled_limiter_allows_everything(self):
        limiter = RequestLimiter(enabled=False)

        assert limiter.redis_client is None
        assert await limiter.acquire("S1") is True


class TestCursor:
    def test_initial_cursor_looks_back(self):
        state = decode_cursor(None, initial_lookback_days=7)

        assert state["nextToken"] is None
        assert state["postedAfter"] < format_timestamp(utc_now() - timedelta(days=6))

    def test_round_trip(self):
        state = {"postedAfter": "2024-05-01T00:00:00Z", "nextToken": "abc", "highWater": None}

        assert decode_cursor(encode_cursor(state)) == state

    @pytest.mark.parametrize("cursor", ["not-json", json.dumps({"nextToken": "x"})])
    def test_invalid_cursor(self, cursor):
        with pytest.raises(UpstreamError):
            decode_cursor(cursor)


@pytest.mark.parametrize(
    "status, expected",
    [
        (429, RateLimitedError),
        (401, AccessDeniedError),
        (403, AccessDeniedError),
        (500, TransientError),
        (503, TransientError),
        (400, UpstreamError),
    ],
)
def test_raise_for_status(status, expected):
    with pytest.raises(expected):
        raise_for_status(status, {"errors": [{"code": "x"}]}, "listFinancialEvents")


class TestFinancesClient:
    def _client(self):
        return FinancesClient(
            app_credentials={"AppClientId": "id", "AppClientSecret": "secret"},
            max_results_per_page=50,
        )

    def _scoped(self):
        return ScopedCredentials("ASIA1", "secret", "token")

    def _credential(self):
        return seller("S1")

    def _body(self, records, next_token=None):
        payload = {"FinancialEvents": {"ShipmentEventList": records}}
        if next_token:
            payload["NextToken"] = next_token
        return {"payload": payload}

    async def test_fetch_page_with_next_token(self):
        client = self._client()
        client._request = AsyncMock(
            side_effect=[
                (200, {"access_token": "Atza|token", "expires_in": 3600}),
                (
                    200,
                    self._body(
                        [{"AmazonOrderId": "O-1", "PostedDate": "2024-05-02T00:00:00Z"}],
                        next_token="page-2",
                    ),
                ),
            ]
        )
        cursor = encode_cursor(
            {"postedAfter": "2024-05-01T00:00:00Z", "nextToken": None, "highWater": None}
        )

        page = await client.fetch_page(self._credential(), self._scoped(), cursor)

        assert page.has_more is True
        assert len(page.records) == 1
        assert decode_cursor(page.next_cursor) == {
            "postedAfter": "2024-05-01T00:00:00Z",
            "nextToken": "page-2",
            "highWater": "2024-05-02T00:00:00Z",
        }
        method, url = client._request.call_args_list[1].args[:2]
        headers = client._request.call_args_list[1].kwargs["headers"]
        assert method == "GET"
        assert url.startswith("https://sellingpartnerapi-na.amazon.com/finances/v0/")
        assert "MaxResultsPerPage=50" in url
        assert headers["x-amz-access-token"] == "Atza|token"
        assert "Authorization" in headers

    async def test_last_page_restarts_from_high_water(self):
        client = self._client()
        client._tokens[("tenant-a", "S1")] = ("Atza|cached", utc_now() + timedelta(hours=1))
        client._request = AsyncMock(
            return_value=(
                200,
                self._body([{"AmazonOrderId": "O-2", "PostedDate": "2024-05-03T00:00:00Z"}]),
            )
        )
        cursor = encode_cursor(
            {
                "postedAfter": "2024-05-01T00:00:00Z",
                "nextToken": "page-2",
                "highWater": "2024-05-02T00:00:00Z",
            }
        )

        page = await client.fetch_page(self._credential(), self._scoped(), cursor)

        assert page.has_more is False
        assert decode_cursor(page.next_cursor) == {
            "postedAfter": "2024-05-03T00:00:00Z",
            "nextToken": None,
            "highWater": "2024-05-03T00:00:00Z",
        }
        url = client._request.call_args.args[1]
        assert "NextToken=page-2" in url

    async def test_up_to_date_cursor_skips_the_request(self):
        client = self._client()
        client._request = AsyncMock()
        cursor = encode_cursor(
            {"postedAfter": format_timestamp(utc_now()), "nextToken": None, "highWater": None}
        )

        page = await client.fetch_page(self._credential(), self._scoped(), cursor)

        assert page.records == []
        assert page.has_more is False
        assert page.next_cursor == cursor
        client._request.assert_not_called()

    async def test_throttled_page(self):
        client = self._client()
        client._tokens[("tenant-a", "S1")] = ("Atza|cached", utc_now() + timedelta(hours=1))
        client._request = AsyncMock(return_value=(429, {"errors": [{"code": "QuotaExceeded"}]}))

        with pytest.raises(RateLimitedError):
            await client.fetch_page(self._credential(), self._scoped(), None)

    async def test_revoked_refresh_token(self):
        client = self._client()
        client._request = AsyncMock(return_value=(400, {"error": "invalid_grant"}))

        with pytest.raises(AccessDeniedError):
            await client.get_access_token(self._credential())

    async def test_access_tokens_are_cached_per_seller_identity(self):
        client = self._client()

        async def exchange(method, url, headers=None, data=None):
            return 200, {"access_token": f"token-for-{data['refresh_token']}"}

        client._request = AsyncMock(side_effect=exchange)
        tenant_a = seller("S1", seller_key="tenant-a")
        tenant_b = replace(seller("S1", seller_key="tenant-b"), refresh_token="Atzr|tenant-b")

        token_a = await client.get_access_token(tenant_a)
        token_b = await client.get_access_token(tenant_b)
        again_a = await client.get_access_token(tenant_a)

        assert token_a == "token-for-Atzr|S1"
        assert token_b == "token-for-Atzr|tenant-b"
        assert again_a == token_a
        exchanged = [call.kwargs["data"]["refresh_token"] for call in client._request.call_args_list]
        assert exchanged == ["Atzr|S1", "Atzr|tenant-b"]
