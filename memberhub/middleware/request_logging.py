# memberhub/middleware/request_logging.py
from __future__ import annotations

import logging
import time
from typing import Iterable, Tuple

from starlette.datastructures import URL
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from memberhub.core.errors import ensure_trace_id

logger = logging.getLogger("memberhub.request")

QUIET_PATHS: Tuple[str, ...] = (
    "/api/healthz",
    "/api/readyz",
    "/docs",
    "/redoc",
    "/openapi.json",
)

# query parameters that act as credentials (transfer acceptance links)
MASKED_PARAMS = frozenset({"token", "transfer_token"})


def masked_url(url: URL) -> str:
    """Path plus query string with credential parameters blanked out."""
    if not url.query:
        return url.path
    pairs = []
    for part in url.query.split("&"):
        name = part.partition("=")[0]
        pairs.append(f"{name}=***" if name in MASKED_PARAMS else part)
    return f"{url.path}?{'&'.join(pairs)}"


def _remote_addr(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One access line per API call: method, masked URL, status, caller ip,
    authenticated user and elapsed time, keyed by the request's trace id.

    The trace id is shared with the JSON error handlers and returned as
    X-Request-ID on every response, quiet paths included.
    """

    def __init__(self, app, quiet_paths: Iterable[str] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = tuple(quiet_paths)

    def _is_quiet(self, request: Request) -> bool:
        if request.method == "OPTIONS":
            return True
        return request.url.path.startswith(self.quiet_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = ensure_trace_id(request)
        quiet = self._is_quiet(request)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            if not quiet:
                logger.exception(
                    "%s %s crashed after %dms ip=%s trace_id=%s",
                    request.method,
                    masked_url(request.url),
                    (time.perf_counter() - started) * 1000,
                    _remote_addr(request),
                    trace_id,
                )
            raise

        response.headers["X-Request-ID"] = trace_id
        if not quiet:
            logger.log(
                _level_for(response.status_code),
                "%s %s -> %s %dms ip=%s user_id=%s trace_id=%s",
                request.method,
                masked_url(request.url),
                response.status_code,
                (time.perf_counter() - started) * 1000,
                _remote_addr(request),
                getattr(request.state, "user_id", None),
                trace_id,
            )
        return response
