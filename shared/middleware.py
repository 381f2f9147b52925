"""FastAPI middleware for request ID injection and problem+json error rendering."""

from collections.abc import Callable
from contextvars import ContextVar
from typing import Any
from uuid import uuid4

import structlog
from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from shared.exceptions import ProblemDetailError

logger = structlog.get_logger()

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PROBLEM_JSON = "application/problem+json"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind an X-Request-ID to the request, the log context and the response.

    A caller-supplied header is reused; otherwise a UUID v4 is generated.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Callable[..., Response]]
    ):
        rid = request.headers.get("X-Request-ID", str(uuid4()))
        request_id_var.set(rid)
        structlog.contextvars.bind_contextvars(request_id=rid)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")


def _problem(request: Request, status: int, body: dict[str, Any]) -> JSONResponse:
    body.setdefault("instance", str(request.url.path))
    return JSONResponse(status_code=status, content=body, media_type=PROBLEM_JSON)


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    """Render ProblemDetailError subclasses, including their extension members."""
    logger.warning("problem_returned", title=exc.title, status=exc.status, detail=exc.detail)
    body: dict[str, Any] = {
        "type": exc.type_uri,
        "title": exc.title,
        "status": exc.status,
        "detail": exc.detail,
    }
    if exc.violations:
        body["violations"] = exc.violations
    body.update(exc.extensions())
    return _problem(request, exc.status, body)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Convert FastAPI request validation errors (bad query, missing upload) to problem+json."""
    violations = []
    for err in exc.errors():
        loc = err.get("loc", ())
        field = ".".join(str(part) for part in loc if part != "body")
        violations.append(
            {
                "field": field or "(root)",
                "message": err.get("msg", "Validation error"),
                "constraint": err.get("type", "validation"),
            }
        )

    return _problem(
        request,
        422,
        {
            "type": "https://journal.local/problems/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": f"Request contains {len(violations)} validation error(s)",
            "violations": violations,
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Convert generic HTTP exceptions (404 routes, 405 methods) to problem+json."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(
        request,
        exc.status_code,
        {
            "type": "about:blank",
            "title": detail,
            "status": exc.status_code,
            "detail": detail,
        },
    )
