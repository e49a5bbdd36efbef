from .request_limiter import RequestLimiter
