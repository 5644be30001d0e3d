from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from orgtree.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("orgtree.request")


def _record(request: Request, status_code: int, started: float) -> dict[str, object]:
    elapsed = time.perf_counter() - started
    # Resolved after routing so the label is the route template, not the raw path.
    path = resolve_http_path_label(request)
    observe_http_request(method=request.method, path=path, status=status_code, duration=elapsed)
    return {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(elapsed * 1000, 2),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error("http.error", exc_info=True, extra=_record(request, 500, started))
            raise

        fields = _record(request, response.status_code, started)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "http.request", extra=fields)
        return response
