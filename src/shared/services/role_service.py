"""
Cross-account role assumption for seller-scoped upstream calls.
"""

import asyncio
from datetime import timedelta
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.schemas.dto import ScopedCredentials
from shared.utils.configs import aws_configs
from shared.utils.errors import (
    AccessDeniedError,
    NotFoundError,
    RateLimitedError,
    TransientError,
)
from shared.utils.helpers import utc_now
from shared.utils.logger import logger

# Reuse cached credentials until this close to their expiry
REFRESH_MARGIN = timedelta(minutes=5)


class RoleService:
    """Wraps STS AssumeRole and caches the temporary credentials per role."""

    def __init__(self, sts_client=None, session_duration_seconds: int = 3600):
        self.sts_client = sts_client or boto3.client(
            "sts", region_name=aws_configs["region"]
        )
        self.session_duration_seconds = session_duration_seconds
        self._cache: Dict[str, ScopedCredentials] = {}

    def _cached(self, role_arn: str) -> Optional[ScopedCredentials]:
        credentials = self._cache.get(role_arn)
        if credentials and credentials.expiration:
            if credentials.expiration - REFRESH_MARGIN > utc_now():
                return credentials
        return None

    async def assume(self, role_arn: Optional[str], session_name: str) -> ScopedCredentials:
        """
        Assume the given role.

        Args:
            role_arn: Role to assume
            session_name: Role session name, shows up in CloudTrail

        Returns:
            Temporary credentials for the role

        Raises:
            NotFoundError: If no role is configured
            AccessDeniedError: If STS refuses the assumption
            RateLimitedError: If STS throttles the request
            TransientError: For any other STS failure
        """
        if not role_arn:
            raise NotFoundError(message="No role configured for upstream access")

        cached = self._cached(role_arn)
        if cached:
            return cached

        try:
            response = await asyncio.to_thread(
                self.sts_client.assume_role,
                RoleArn=role_arn,
                RoleSessionName=session_name[:64],
                DurationSeconds=self.session_duration_seconds,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "AccessDenied":
                raise AccessDeniedError(message=f"Cannot assume {role_arn}: {str(e)}")
            if code in ("Throttling", "ThrottlingException"):
                raise RateLimitedError(message=f"STS throttled assume_role: {str(e)}")
            raise TransientError(message=f"STS assume_role failed: {str(e)}")
        except BotoCoreError as e:
            raise TransientError(message=f"STS unreachable: {str(e)}")

        raw = response["Credentials"]
        credentials = ScopedCredentials(
            access_key_id=raw["AccessKeyId"],
            secret_access_key=raw["SecretAccessKey"],
            session_token=raw["SessionToken"],
            expiration=raw.get("Expiration"),
        )
        self._cache[role_arn] = credentials
        logger.info(f"Assumed role {role_arn} as {session_name}")
        return credentials
