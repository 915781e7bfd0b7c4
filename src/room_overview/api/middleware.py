"""Error handling: JSON envelopes under ``/api``, HTML pages everywhere else.

JSON errors follow ``{"error": {"code": "...", "message": "...", "error_id": "..."}}``.

Status code mapping:
- ``StoreUnavailableError`` (no snapshot served yet) → 503
- ``RequestValidationError`` → 422 (JSON) / 400 page
- ``ValueError`` → 400 Bad Request
- ``HTTPException`` → its status; unknown HTML paths get the 404 page
- Any other ``Exception`` → 500 with an error id that is also logged
"""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from room_overview.api.models import ErrorDetail, ErrorResponse
from room_overview.api.templating import templates
from room_overview.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def _is_api_request(request: Request) -> bool:
    path = request.url.path
    return path == API_PREFIX or path.startswith(API_PREFIX + "/")


def _json_error(
    status_code: int,
    code: str,
    message: str,
    error_id: str | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, error_id=error_id))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _error_page(request: Request, status_code: int, error_id: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "500.html",
        {"error_id": error_id, "status_code": status_code},
        status_code=status_code,
    )


async def _handle_http_exception(
    request: Request,
    exc: StarletteHTTPException,
) -> Response:
    if _is_api_request(request):
        code = "NOT_FOUND" if exc.status_code == 404 else f"HTTP_{exc.status_code}"
        response: Response = _json_error(exc.status_code, code, str(exc.detail))
    elif exc.status_code == 404:
        response = templates.TemplateResponse(request, "404.html", {}, status_code=404)
    else:
        response = HTMLResponse(str(exc.detail), status_code=exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> Response:
    logger.info("Request validation failed on %s: %s", request.url.path, exc.errors())
    if _is_api_request(request):
        return _json_error(422, "VALIDATION_ERROR", str(exc.errors()))
    return HTMLResponse("Bad request", status_code=400)


async def _handle_value_error(request: Request, exc: ValueError) -> Response:
    logger.info("Validation error: %s", exc)
    if _is_api_request(request):
        return _json_error(400, "VALIDATION_ERROR", str(exc))
    return HTMLResponse("Bad request", status_code=400)


async def _handle_store_unavailable(
    request: Request,
    exc: StoreUnavailableError,
) -> Response:
    error_id = str(uuid.uuid4())
    logger.error("Booking store unavailable (error_id=%s): %s", error_id, exc)
    if _is_api_request(request):
        return _json_error(503, "STORE_UNAVAILABLE", "Bookings are not available yet", error_id)
    return _error_page(request, 503, error_id)


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    Every failure gets a fresh error id; it is logged together with the
    traceback and shown to the client so reports can be matched to logs.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            error_id = str(uuid.uuid4())
            logger.error(
                "Unhandled exception on %s %s (error_id=%s)",
                request.method,
                request.url.path,
                error_id,
                exc_info=True,
            )
            if _is_api_request(request):
                return _json_error(500, "INTERNAL_ERROR", "Internal server error", error_id)
            return _error_page(request, 500, error_id)


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application."""
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StoreUnavailableError, _handle_store_unavailable)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
