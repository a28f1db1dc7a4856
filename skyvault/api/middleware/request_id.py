"""
Request correlation middleware.

Every request gets an X-Request-ID (the caller's, or a new uuid4) that is
echoed on the response and visible to all logging inside the request. The
`snapshot` and `workspace` query parameters, when present, are bound to the
log context too, so store and thread logs can be traced back to the scope
the caller asked for.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from skyvault.logging_config import bind_log_context, get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 1000


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a correlation ID to each request and log slow ones."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            with bind_log_context(
                snapshot=request.query_params.get("snapshot"),
                workspace=request.query_params.get("workspace"),
            ):
                start = time.perf_counter()
                response = await call_next(request)
                elapsed_ms = (time.perf_counter() - start) * 1000

                # Thread rebuilds that fetch remotely are the usual offenders
                if elapsed_ms > SLOW_REQUEST_MS:
                    logger.warning(
                        "Slow request %s %s", request.method, request.url.path,
                        extra={"duration_ms": round(elapsed_ms, 1)},
                    )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)
