"""Response envelope shared by every route."""
import os
from typing import Any, Dict, Optional


def success(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def failure(message: str, code: str, details: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message, "error": code}
    if details is not None:
        body["details"] = details
    return body


def debug_enabled() -> bool:
    """Development builds echo one-time tokens and codes back to the caller."""
    return os.getenv("ENVIRONMENT", "production") == "development"
