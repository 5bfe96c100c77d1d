from __future__ import annotations

import logging
from time import perf_counter
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("stars.api.request")

REQUEST_ID_HEADER = "X-Request-Id"


def _request_fields(request: Request, request_id: str, status_code: int, started: float) -> dict[str, Any]:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    fields: dict[str, Any] = {
        "request_id": request_id,
        "route": route_path if isinstance(route_path, str) else request.url.path,
        "method": request.method,
        "status_code": status_code,
        "execution_time_ms": round((perf_counter() - started) * 1000, 2),
    }
    # Routes name the child in the path; POST bodies are not read here.
    child_id = request.scope.get("path_params", {}).get("child_id")
    if child_id:
        fields["child_id"] = child_id
    store = getattr(request.app.state, "store", None)
    if store is not None:
        fields["backend"] = store.name
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request.failed", extra=_request_fields(request, request_id, 500, started))
            raise

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "request.completed", extra=_request_fields(request, request_id, response.status_code, started))
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
