"""
Categorization Control Routes

Runtime switches for LLM categorization. Disabling it sends every email to
the fallback category until it is re-enabled.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_onebox
from api.models.responses import success_response
from onebox.application import OneboxApplication

router = APIRouter(prefix="/api/ai", tags=["AI"])


@router.post("/enable-categorization", summary="Enable LLM categorization")
async def enable_categorization(onebox: OneboxApplication = Depends(get_onebox)):
    onebox.categorizer.enable()
    return success_response(message="AI categorization enabled")


@router.post("/disable-categorization", summary="Disable LLM categorization")
async def disable_categorization(onebox: OneboxApplication = Depends(get_onebox)):
    onebox.categorizer.disable()
    return success_response(message="AI categorization disabled")


@router.get("/status", summary="Categorizer status")
async def categorization_status(onebox: OneboxApplication = Depends(get_onebox)):
    return success_response(onebox.categorizer.stats())


@router.post("/clear-cache", summary="Clear the categorization cache")
async def clear_cache(onebox: OneboxApplication = Depends(get_onebox)):
    onebox.categorizer.clear_cache()
    return success_response(message="Categorization cache cleared")
