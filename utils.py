"""Small helpers shared by the routes and services."""
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_URL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def sse_event(payload: Dict[str, Any]) -> str:
    """Encode one server-sent event."""
    return f"data: {json.dumps(payload)}\n\n"


def sanitize_input(value: str) -> str:
    """Strip script blocks, javascript: URLs and inline event handlers."""
    value = _SCRIPT_RE.sub("", value)
    value = _JS_URL_RE.sub("", value)
    value = _EVENT_HANDLER_RE.sub("", value)
    return value.strip()


def truncate(text: str, limit: int) -> str:
    """Cut `text` to at most `limit` characters, ending with an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[: limit - 3].strip() + "..."
