"""
Statistics Route

StatsUnavailableError propagates to the exception handlers, which render it
as a 500 error payload.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_onebox
from api.models.responses import success_response
from onebox.application import OneboxApplication

router = APIRouter(prefix="/api/stats", tags=["Statistics"])


@router.get("", summary="Aggregated statistics")
async def get_stats(onebox: OneboxApplication = Depends(get_onebox)):
    return success_response(await onebox.get_stats())
