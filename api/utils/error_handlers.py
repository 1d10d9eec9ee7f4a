"""
Global Exception Handlers

Renders every API failure in the same envelope the routes use for success,
``{success: false, error, timestamp}``, and logs it with request context.

Design Considerations:
- One response shape for clients regardless of the failure source
- Domain errors mapped to status codes in a single place
- Internal details logged, never returned
"""

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse as StarletteJSONResponse

from onebox.exceptions import AccountRegistrationError, ProviderExcludedError, StatsUnavailableError

logger = logging.getLogger(__name__)


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def serialize_json(obj: Any) -> str:
    return json.dumps(obj, cls=DateTimeEncoder)


class JSONResponse(StarletteJSONResponse):
    """JSONResponse that handles datetime serialization."""
    def render(self, content: Any) -> bytes:
        return serialize_json(content).encode("utf-8")


def error_payload(message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "success": False,
        "error": message,
        "timestamp": datetime.now(timezone.utc),
    }
    if details:
        payload["details"] = details
    return payload


def add_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StatsUnavailableError, stats_unavailable_handler)
    app.add_exception_handler(ProviderExcludedError, provider_excluded_handler)
    app.add_exception_handler(AccountRegistrationError, account_registration_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    log_exception(request, exc, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(str(exc.detail)),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors.

    Missing or malformed fields are a client error, so they map to 400 with
    the offending field locations listed under ``details``.
    """
    log_exception(request, exc, status.HTTP_400_BAD_REQUEST)

    fields = []
    for error in exc.errors():
        loc = [str(item) for item in error.get("loc", ()) if item != "body"]
        fields.append({"field": ".".join(loc), "message": error.get("msg", "")})

    missing = [item["field"] for item in fields if item["field"]]
    message = f"Invalid request: {', '.join(missing)}" if missing else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(message, {"errors": fields}),
    )


async def stats_unavailable_handler(request: Request, exc: StatsUnavailableError) -> JSONResponse:
    log_exception(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload("Failed to get stats", {"source": exc.source}),
    )


async def provider_excluded_handler(request: Request, exc: ProviderExcludedError) -> JSONResponse:
    log_exception(request, exc, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(
            f"Accounts from provider '{exc.provider}' are not supported",
            {"provider": exc.provider},
        ),
    )


async def account_registration_handler(request: Request, exc: AccountRegistrationError) -> JSONResponse:
    log_exception(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(f"Failed to add account {exc.label}"),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log_exception(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, include_traceback=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload("An unexpected error occurred", {"type": exc.__class__.__name__}),
    )


def log_exception(
    request: Request,
    exc: Exception,
    status_code: int,
    include_traceback: bool = False
) -> None:
    """
    Log an exception with request context at a severity matching the status.

    Args:
        request: Request that caused the exception
        exc: Exception instance
        status_code: HTTP status code returned to the client
        include_traceback: Whether to include the full traceback
    """
    if status_code >= 500:
        log_level = logging.ERROR
    elif status_code >= 400:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    error_details = {
        "status_code": status_code,
        "error_type": exc.__class__.__name__,
        "error_message": str(exc),
        "client_host": request.client.host if request.client else "unknown",
    }
    if include_traceback:
        error_details["traceback"] = traceback.format_exc()

    logger.log(
        log_level,
        f"Exception during request to {request.method} {request.url.path}: {exc}",
        extra={"error_details": error_details},
    )
