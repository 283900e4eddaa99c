"""Server-sent event framing for snapshot payloads."""
from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return payload


def encode_event(payload: Any) -> str:
    """Frame one payload as `data: <json>\\n\\n`."""
    data = json.dumps(_jsonable(payload), ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n"


def encode_text_event(text: str) -> str:
    """Frame raw file text as a `{"content": ...}` event."""
    return encode_event({"content": text})


def encode_comment(text: str = "keepalive") -> str:
    # Comment lines are ignored by EventSource but keep proxies from idling out.
    return f": {text}\n\n"
