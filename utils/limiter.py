from fastapi import Request
from slowapi import Limiter
import logging
import os
from typing import Optional

import redis

logger = logging.getLogger("backend.limiter")

# HTTP flood protection for the public endpoints (per client IP)
INTAKE_HTTP_LIMIT = os.getenv("INTAKE_HTTP_LIMIT", "100/15minutes")


def origin_address(request: Request) -> str:
    """Resolve the caller-reported origin: X-Forwarded-For, then X-Real-IP.

    The value is untrusted and only used as a rate-limiting key and for the
    stored submission metadata.
    """
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(',')[0].strip()
        if ip:
            return ip
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return "unknown"


def forwarded_for_ip(request: Request) -> str:
    """Limiter key: forwarded origin, falling back to the socket peer."""
    ip = origin_address(request)
    if ip != "unknown":
        return ip
    return request.client.host if request.client else ""


def _create_limiter() -> Limiter:
    """Create limiter with Redis storage if configured, otherwise in-memory."""
    redis_url = os.environ.get("REDIS_URL")
    if redis_url:
        logger.info("Using Redis for HTTP rate limiting")
        return Limiter(key_func=forwarded_for_ip, storage_uri=redis_url)
    logger.info("Using in-memory HTTP rate limiting (Redis not configured)")
    return Limiter(key_func=forwarded_for_ip)


# Global limiter instance to be shared across the app and routers
limiter = _create_limiter()


_redis_client = None

def get_redis_client() -> Optional["redis.Redis"]:
    """Get or create the shared Redis client; None when REDIS_URL is unset or unreachable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    redis_url = os.environ.get("REDIS_URL")
    if not redis_url:
        return None

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.warning("Failed to connect to Redis: %s", e)
        return None
    logger.info("Redis client connected")
    _redis_client = client
    return _redis_client
