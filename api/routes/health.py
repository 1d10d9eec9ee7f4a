"""
Service Overview and Health Routes
"""

import logging

from fastapi import APIRouter, Depends, status

from api.dependencies import get_onebox
from api.models.responses import success_response
from api.utils.error_handlers import JSONResponse
from onebox import __version__
from onebox.application import OneboxApplication

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Monitoring"])

ENDPOINTS = {
    "health": "/health",
    "stats": "/api/stats",
    "emails": "/api/emails",
    "search": "/api/emails/search",
    "accounts": "/api/accounts",
    "notifications": "/api/notifications/test",
    "contexts": "/api/contexts",
    "ai": "/api/ai/status",
    "chat": "/api/chat",
}


@router.get("/", summary="Service overview")
async def root():
    return success_response(
        {"name": "Email Onebox", "version": __version__, "endpoints": ENDPOINTS},
        message="Email onebox API is running",
    )


@router.get("/health", summary="Aggregated collaborator health")
async def health_check(onebox: OneboxApplication = Depends(get_onebox)):
    """
    Run every collaborator check.

    Returns 200 when all checks pass and 503 otherwise; the body always
    carries the per-service breakdown.
    """
    report = await onebox.check_health()
    payload = success_response(report.to_dict())
    if not report.healthy:
        payload["success"] = False
        payload["error"] = "One or more services are unhealthy"
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=payload)
    return JSONResponse(status_code=status.HTTP_200_OK, content=payload)
