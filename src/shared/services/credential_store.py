"""
Seller credential store backed by a DynamoDB table.

The table is owned by another stack; this module only reads it.
"""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.schemas.dto import SellerCredential
from shared.utils.configs import aws_configs
from shared.utils.errors import NotFoundError, RateLimitedError, TransientError
from shared.utils.logger import logger

THROTTLING_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
}


def parse_seller_item(item: Dict[str, Any]) -> SellerCredential:
    """
    Convert a DynamoDB item into a SellerCredential.

    Raises:
        NotFoundError: If the item lacks sellerKey, sellerId or refreshToken
    """
    missing = [
        name for name in ("sellerKey", "sellerId", "refreshToken") if not item.get(name)
    ]
    if missing:
        raise NotFoundError(
            message=f"Seller item {item.get('sellerKey')}/{item.get('sellerId')} "
            f"is missing {', '.join(missing)}"
        )

    return SellerCredential(
        seller_key=str(item["sellerKey"]),
        seller_id=str(item["sellerId"]),
        refresh_token=str(item["refreshToken"]),
        role_arn=item.get("roleArn") or aws_configs["spapi_role_arn"],
        region=item.get("awsRegion") or aws_configs["region"],
    )


def _translate_client_error(e: ClientError, action: str) -> Exception:
    code = e.response.get("Error", {}).get("Code", "")
    if code in THROTTLING_CODES:
        return RateLimitedError(message=f"Credential store throttled during {action}: {code}")
    return TransientError(message=f"Credential store error during {action}: {str(e)}")


class SellerCredentialStore:
    """Paginated, read-only access to the seller secrets table."""

    def __init__(self, table=None, table_name: Optional[str] = None):
        """
        Args:
            table: boto3 DynamoDB Table resource (injected by tests)
            table_name: Overrides DYNAMODB_SECRETS_TABLE
        """
        if table is None:
            dynamodb = boto3.resource("dynamodb", region_name=aws_configs["region"])
            table = dynamodb.Table(table_name or aws_configs["secrets_table"])
        self.table = table

    async def iter_seller_pages(
        self, page_size: int = 100
    ) -> AsyncIterator[List[SellerCredential]]:
        """
        Enumerate all sellers one scan page at a time.

        Items that cannot be parsed are logged and skipped so that one broken
        record never hides the rest of the table.

        Args:
            page_size: Maximum items per scan request

        Yields:
            Lists of SellerCredential, one per scan page

        Raises:
            RateLimitedError, TransientError: If a scan page cannot be read
        """
        scan_kwargs: Dict[str, Any] = {"Limit": page_size}
        page_number = 0

        while True:
            page_number += 1
            try:
                response = await asyncio.to_thread(self.table.scan, **scan_kwargs)
            except ClientError as e:
                raise _translate_client_error(e, f"scan page {page_number}")
            except BotoCoreError as e:
                raise TransientError(
                    message=f"Credential store unreachable on page {page_number}: {str(e)}"
                )

            sellers = []
            for item in response.get("Items", []):
                try:
                    sellers.append(parse_seller_item(item))
                except NotFoundError as e:
                    logger.warning(f"Skipping seller record: {e.message}")

            logger.info(f"Read {len(sellers)} sellers from credential page {page_number}")
            yield sellers

            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            scan_kwargs["ExclusiveStartKey"] = last_key

    async def list_sellers(self, page_size: int = 100) -> List[SellerCredential]:
        """Collect every seller. Convenience for the CLI; the Dispatcher streams pages."""
        sellers = []
        async for page in self.iter_seller_pages(page_size):
            sellers.extend(page)
        return sellers

    async def get(self, seller_key: str, seller_id: str) -> SellerCredential:
        """
        Read one seller's credential.

        Raises:
            NotFoundError: If the seller is not in the table or the item is incomplete
            RateLimitedError, TransientError: If DynamoDB cannot be read
        """
        try:
            response = await asyncio.to_thread(
                self.table.get_item,
                Key={"sellerKey": seller_key, "sellerId": seller_id},
            )
        except ClientError as e:
            raise _translate_client_error(e, f"get {seller_key}/{seller_id}")
        except BotoCoreError as e:
            raise TransientError(message=f"Credential store unreachable: {str(e)}")

        item = response.get("Item")
        if not item:
            raise NotFoundError(message=f"No credential for seller {seller_key}/{seller_id}")
        return parse_seller_item(item)
