"""
Global Error Handler.

Domain errors (CrisisCommError) map to their own status code and message.
Everything else is caught by the middleware and returned as a generic
JSON error. NEVER leaks stack traces or internal details to clients.
Every unhandled error gets a unique error_id for correlation with server logs.
"""

import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from crisiscomm.exceptions import CrisisCommError

logger = structlog.get_logger(__name__)


async def crisis_error_handler(request: Request, exc: CrisisCommError) -> JSONResponse:
    """Render a domain error as {"error", "status", "details"}."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_rejected",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
        status=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "status": exc.status_code, "details": exc.details},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware — catches everything else.

    Returns structured error responses:
    {
      "error": "human-readable message",
      "error_id": "uuid for log correlation",
      "status": 500
    }
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)

        except Exception as exc:
            error_id = str(uuid.uuid4())

            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                traceback=traceback.format_exc(),
            )

            body: dict = {
                "error": "An internal error occurred. Please try again later.",
                "error_id": error_id,
                "status": 500,
            }
            # Type name only, never the traceback
            if self.debug:
                body["debug_hint"] = type(exc).__name__

            return JSONResponse(status_code=500, content=body)
