"""
Notification Routes
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_onebox
from api.models.responses import success_response
from onebox.application import OneboxApplication

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.post("/test", summary="Send a test notification")
async def send_test_notification(onebox: OneboxApplication = Depends(get_onebox)):
    result = await onebox.notifier.send_test()
    message = "Test notification sent" if result.sent else "No notification channel delivered"
    return success_response(result.to_dict(), message=message)


@router.post("/reset", summary="Close all notification circuit breakers")
async def reset_circuit_breakers(onebox: OneboxApplication = Depends(get_onebox)):
    onebox.notifier.reset_circuit_breakers()
    return success_response(message="Circuit breakers reset")
