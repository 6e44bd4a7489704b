from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def submission_message(paragraph_index: int, completed: bool) -> str:
    """Message returned to the student after a paragraph summary is accepted"""
    message = f"Summary for paragraph {paragraph_index} submitted successfully."
    if completed:
        message += " Module completed!"
    return message


def success_response(data: Any, message: Optional[str] = None) -> Dict[str, Any]:
    """Standard success envelope shared by every progress endpoint"""
    body: Dict[str, Any] = {"status": "success"}
    if message:
        body["message"] = message
    body["data"] = data
    return body


def error_response(message: str) -> Dict[str, Any]:
    return {"status": "error", "message": message}
