import logging
import os
import sys
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from utils.limiter import forwarded_for_ip


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


def setup_logging() -> None:
    """Configure root logging and align uvicorn loggers.

    - Level controlled by LOG_LEVEL env var (default INFO)
    - Single stdout handler; skipped if something already configured the root
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Logs request start/end with latency, status and a request id.

    The request id comes from X-Request-ID when present and is echoed back
    in the response headers. Bodies are never logged: submissions carry
    end-user data.
    """

    def __init__(self, app):
        super().__init__(app)
        self.logger = logging.getLogger("backend.http")

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.time()

        path = request.url.path
        method = request.method
        client = forwarded_for_ip(request)

        self.logger.info(
            "request start %s %s client=%s rid=%s",
            method,
            path,
            client,
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = int((time.time() - start) * 1000)
            self.logger.exception(
                "request error %s %s time_ms=%s rid=%s",
                method,
                path,
                elapsed_ms,
                request_id,
            )
            raise
        elapsed_ms = int((time.time() - start) * 1000)
        response.headers["x-request-id"] = request_id
        self.logger.info(
            "request end %s %s status=%s time_ms=%s rid=%s",
            method,
            path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response
