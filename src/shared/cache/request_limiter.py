"""
Redis-backed request limiter for upstream finances API calls.
"""

import time
from typing import Optional

import redis

from shared.utils.configs import limiter_configs, redis_config
from shared.utils.logger import logger


class RequestLimiter:
    """
    Fixed-window request counter per seller and upstream operation.

    All Workers share the same Redis keys, so the limit holds across
    concurrent Lambda invocations. When Redis is unavailable the limiter
    fails open: ingestion keeps going and upstream 429s remain the backstop.
    """

    def __init__(
        self,
        redis_client=None,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        key_prefix: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.max_requests = max_requests or limiter_configs["max_requests"]
        self.window_seconds = window_seconds or limiter_configs["window_seconds"]
        self.key_prefix = key_prefix or limiter_configs["key_prefix"]
        self.enabled = limiter_configs["enabled"] if enabled is None else enabled

        if redis_client is not None or not self.enabled:
            self.redis_client = redis_client
            return

        try:
            self.redis_client = redis.from_url(
                redis_config["redis_url"],
                decode_responses=redis_config["redis_decode_responses"],
                socket_timeout=redis_config["redis_socket_timeout"],
                socket_connect_timeout=redis_config["redis_socket_connect_timeout"],
                retry_on_timeout=redis_config["redis_retry_on_timeout"],
            )
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            self.redis_client = None
            logger.warning("Using null Redis client - request limiting disabled")

    def _window_key(self, seller_id: str, operation: str, now: float) -> str:
        window = int(now // self.window_seconds)
        return f"{self.key_prefix}:{operation}:{seller_id}:{window}"

    async def acquire(
        self, seller_id: str, operation: str = "listFinancialEvents"
    ) -> bool:
        """
        Count one request against the current window.

        Args:
            seller_id: Seller the request is made for
            operation: Upstream operation name

        Returns:
            True if the request may proceed, False if the window is exhausted
        """
        if not self.enabled or self.redis_client is None:
            return True

        key = self._window_key(seller_id, operation, time.time())
        try:
            pipe = self.redis_client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window_seconds)
            count, _ = pipe.execute()
        except Exception as e:
            logger.warning(f"Request limiter unavailable, allowing request: {str(e)}")
            return True

        if int(count) > self.max_requests:
            logger.warning(
                f"Request limit of {self.max_requests}/{self.window_seconds}s "
                f"reached for {operation} on seller {seller_id}"
            )
            return False
        return True
