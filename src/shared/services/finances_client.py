"""
Client for the upstream marketplace finances API.

Only the subset needed to page through shipment financial events is
implemented: Login-with-Amazon token exchange, SigV4 request signing with the
seller-scoped role credentials, and GET /finances/v0/financialEvents.
"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import aiohttp
import boto3
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError, ClientError

from shared.schemas.dto import FinancialEventsPage, ScopedCredentials, SellerCredential
from shared.utils.configs import aws_configs, worker_configs
from shared.utils.errors import (
    AccessDeniedError,
    NotFoundError,
    RateLimitedError,
    TransientError,
    UpstreamError,
)
from shared.utils.helpers import format_timestamp, parse_timestamp, utc_now
from shared.utils.logger import logger

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
FINANCIAL_EVENTS_PATH = "/finances/v0/financialEvents"

REGION_ENDPOINTS = {
    "us-east-1": "https://sellingpartnerapi-na.amazon.com",
    "eu-west-1": "https://sellingpartnerapi-eu.amazon.com",
    "us-west-2": "https://sellingpartnerapi-fe.amazon.com",
}

# Upstream rejects PostedAfter values closer than two minutes to now
MIN_POSTED_AGE = timedelta(minutes=2)


def encode_cursor(state: Dict[str, Optional[str]]) -> str:
    """Serialize cursor state into the opaque string stored on the Task."""
    return json.dumps(state, sort_keys=True)


def decode_cursor(
    cursor: Optional[str], initial_lookback_days: Optional[int] = None
) -> Dict[str, Optional[str]]:
    """
    Parse a stored cursor, or build the starting cursor for a new seller.

    Args:
        cursor: Value of Task.last_cursor, None for a seller never ingested
        initial_lookback_days: How far back the first run starts

    Returns:
        Dict with postedAfter, nextToken and highWater

    Raises:
        UpstreamError: If the stored cursor is not a valid cursor
    """
    if not cursor:
        days = initial_lookback_days or worker_configs["initial_lookback_days"]
        start = format_timestamp(utc_now() - timedelta(days=days))
        return {"postedAfter": start, "nextToken": None, "highWater": None}

    try:
        state = json.loads(cursor)
    except (TypeError, ValueError):
        raise UpstreamError(message=f"Unreadable cursor: {cursor!r}")
    if not isinstance(state, dict) or not state.get("postedAfter"):
        raise UpstreamError(message=f"Cursor has no postedAfter: {cursor!r}")

    return {
        "postedAfter": state["postedAfter"],
        "nextToken": state.get("nextToken"),
        "highWater": state.get("highWater"),
    }


def _later(current: Optional[str], candidate: Optional[datetime]) -> Optional[str]:
    if candidate is None:
        return current
    if current is None or candidate > parse_timestamp(current):
        return format_timestamp(candidate)
    return current


def raise_for_status(status: int, body: Any, action: str):
    """
    Map an upstream HTTP status onto the pipeline error taxonomy.

    Raises:
        RateLimitedError: 429
        AccessDeniedError: 401, 403
        TransientError: 5xx
        UpstreamError: any other non-2xx
    """
    if 200 <= status < 300:
        return

    detail = body.get("errors") if isinstance(body, dict) else body
    message = f"{action} returned {status}: {detail}"
    if status == 429:
        raise RateLimitedError(message=message)
    if status in (401, 403):
        raise AccessDeniedError(message=message)
    if status >= 500:
        raise TransientError(message=message)
    raise UpstreamError(message=message)


class FinancesClient:
    """
    Pages through shipment financial events for one seller at a time.

    Access tokens are cached per seller until shortly before they expire, and
    the application credentials are read from SSM once per process.
    """

    def __init__(
        self,
        app_credentials: Optional[Dict[str, str]] = None,
        ssm_client=None,
        max_results_per_page: Optional[int] = None,
        request_timeout_seconds: Optional[float] = None,
        initial_lookback_days: Optional[int] = None,
    ):
        self._app_credentials = app_credentials
        self.ssm_client = ssm_client
        self.max_results_per_page = (
            max_results_per_page or worker_configs["max_results_per_page"]
        )
        self.timeout = aiohttp.ClientTimeout(
            total=request_timeout_seconds or worker_configs["request_timeout_seconds"]
        )
        self.initial_lookback_days = (
            initial_lookback_days or worker_configs["initial_lookback_days"]
        )
        self._tokens: Dict[Tuple[str, str], Tuple[str, datetime]] = {}

    async def get_app_credentials(self) -> Dict[str, str]:
        """
        Read the LWA client id and secret.

        Raises:
            NotFoundError: If no parameter is configured or it lacks a field
            TransientError: If SSM cannot be read
        """
        if self._app_credentials:
            return self._app_credentials

        parameter = aws_configs["app_credentials_parameter"]
        if not parameter:
            raise NotFoundError(message="SELLER_CENTRAL_APP_CREDENTIALS is not set")

        if self.ssm_client is None:
            self.ssm_client = boto3.client("ssm", region_name=aws_configs["region"])

        try:
            response = await asyncio.to_thread(
                self.ssm_client.get_parameter, Name=parameter, WithDecryption=True
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ParameterNotFound":
                raise NotFoundError(message=f"SSM parameter {parameter} not found")
            raise TransientError(message=f"Failed to read {parameter}: {str(e)}")
        except BotoCoreError as e:
            raise TransientError(message=f"SSM unreachable: {str(e)}")

        values = json.loads(response["Parameter"]["Value"])
        if not values.get("AppClientId") or not values.get("AppClientSecret"):
            raise NotFoundError(
                message=f"SSM parameter {parameter} lacks AppClientId or AppClientSecret"
            )
        self._app_credentials = values
        return values

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        """Send one HTTP request and return (status, decoded JSON body)."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method, url, headers=headers, data=data
                ) as response:
                    try:
                        body = await response.json(content_type=None)
                    except (ValueError, aiohttp.ContentTypeError):
                        body = await response.text()
                    return response.status, body
        except asyncio.TimeoutError:
            raise TransientError(message=f"{method} {url} timed out")
        except aiohttp.ClientError as e:
            raise TransientError(message=f"{method} {url} failed: {str(e)}")

    async def get_access_token(self, credential: SellerCredential) -> str:
        """
        Exchange the seller's refresh token for an LWA access token.

        Raises:
            AccessDeniedError: If the refresh token is rejected
            RateLimitedError, TransientError, UpstreamError: Per raise_for_status
        """
        # Tokens belong to a refresh token, so the cache key is the full seller identity
        identity = (credential.seller_key, credential.seller_id)
        cached = self._tokens.get(identity)
        if cached and cached[1] > utc_now():
            return cached[0]

        app = await self.get_app_credentials()
        status, body = await self._request(
            "POST",
            LWA_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
                "client_id": app["AppClientId"],
                "client_secret": app["AppClientSecret"],
            },
        )
        if status == 400:
            # invalid_grant: the refresh token was revoked or is malformed
            raise AccessDeniedError(
                message=f"Refresh token rejected for seller {credential.seller_id}"
            )
        raise_for_status(status, body, "LWA token exchange")

        token = body["access_token"]
        expires_in = int(body.get("expires_in", 3600))
        self._tokens[identity] = (
            token,
            utc_now() + timedelta(seconds=max(expires_in - 60, 0)),
        )
        return token

    def endpoint_for(self, region: str) -> str:
        return REGION_ENDPOINTS.get(region, REGION_ENDPOINTS["us-east-1"])

    def sign(
        self,
        url: str,
        region: str,
        scoped: ScopedCredentials,
        access_token: str,
    ) -> Dict[str, str]:
        """Return the SigV4 headers for a GET of url."""
        request = AWSRequest(
            method="GET",
            url=url,
            headers={
                "x-amz-access-token": access_token,
                "user-agent": "seller-finances/1.0 (Language=Python)",
            },
        )
        SigV4Auth(
            Credentials(
                scoped.access_key_id, scoped.secret_access_key, scoped.session_token
            ),
            "execute-api",
            region,
        ).add_auth(request)
        return dict(request.headers.items())

    async def fetch_page(
        self,
        credential: SellerCredential,
        scoped: ScopedCredentials,
        cursor: Optional[str],
    ) -> FinancialEventsPage:
        """
        Read the page of shipment events that follows cursor.

        Args:
            credential: Seller to read for
            scoped: Credentials of the assumed seller-scoped role
            cursor: Resume pointer; None starts from the initial look-back

        Returns:
            The page's raw ShipmentEventList records and the cursor after it.
            When the upstream sequence is exhausted, next_cursor restarts from
            the newest posted date seen so far and has_more is False.
        """
        state = decode_cursor(cursor, self.initial_lookback_days)

        if state["nextToken"]:
            params = {"NextToken": state["nextToken"]}
        else:
            params = {
                "PostedAfter": state["postedAfter"],
                "MaxResultsPerPage": self.max_results_per_page,
            }
            posted_before = utc_now() - MIN_POSTED_AGE
            if parse_timestamp(state["postedAfter"]) >= posted_before:
                logger.info(
                    f"Seller {credential.seller_id} is up to date as of {state['postedAfter']}"
                )
                return FinancialEventsPage(records=[], next_cursor=encode_cursor(state))

        url = (
            f"{self.endpoint_for(credential.region)}{FINANCIAL_EVENTS_PATH}"
            f"?{urlencode(sorted(params.items()))}"
        )
        access_token = await self.get_access_token(credential)
        headers = self.sign(url, credential.region, scoped, access_token)

        status, body = await self._request("GET", url, headers=headers)
        raise_for_status(status, body, "listFinancialEvents")

        payload = body.get("payload") or {}
        records = (payload.get("FinancialEvents") or {}).get("ShipmentEventList") or []

        high_water = state["highWater"]
        for record in records:
            try:
                high_water = _later(high_water, parse_timestamp(record.get("PostedDate")))
            except ValueError:
                continue

        next_token = payload.get("NextToken")
        if next_token:
            next_state = {
                "postedAfter": state["postedAfter"],
                "nextToken": next_token,
                "highWater": high_water,
            }
        else:
            next_state = {
                "postedAfter": high_water or state["postedAfter"],
                "nextToken": None,
                "highWater": high_water,
            }

        logger.info(
            f"Fetched {len(records)} shipment events for seller {credential.seller_id}"
            f"{' (more pending)' if next_token else ''}"
        )
        return FinancialEventsPage(
            records=records,
            next_cursor=encode_cursor(next_state),
            has_more=bool(next_token),
        )
