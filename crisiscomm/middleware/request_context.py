"""
Request Context Middleware.

Binds request_id, and for crisis-room routes the room_id and the room
sub-resource, into the structlog context so every log line emitted while
serving the request (dispatch, escalation, persistence) carries them.
"""

import re
import time
import uuid
from typing import Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

_ROOM_PATH = re.compile(r"^/api/v1/crisis-rooms/(?P<room_id>[^/]+)(?:/(?P<resource>[^/]+))?")


def room_context(path: str) -> dict[str, Optional[str]]:
    """
    Extract room_id and sub-resource from a crisis-room path.

    /api/v1/crisis-rooms/abc/communications -> {"room_id": "abc", "room_resource": "communications"}
    """
    match = _ROOM_PATH.match(path)
    if match is None:
        return {}
    return {
        "room_id": match.group("room_id"),
        "room_resource": match.group("resource") or "room",
    }


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        room = room_context(request.url.path)
        request.state.request_id = request_id
        request.state.room_id = room.get("room_id")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            **room,
        )

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        if room:
            response.headers["X-Crisis-Room-ID"] = room["room_id"]

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            "room_request_completed" if room else "request_completed",
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
        )
        return response
