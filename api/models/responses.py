"""
API Response Envelope

Every successful route returns ``{success: true, data?, message?, timestamp}``;
failures are rendered by the exception handlers with the same top-level keys.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def success_response(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    if message:
        payload["message"] = message
    payload["timestamp"] = datetime.now(timezone.utc)
    return payload
