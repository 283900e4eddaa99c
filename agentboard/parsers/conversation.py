"""Project parsed log entries into role-tagged conversation turns."""
from __future__ import annotations

from typing import Any, Iterable

from agentboard.models import (
    ConversationTurn,
    OtherBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from agentboard.parsers.log_entries import LogEntry

UNLABELED_ROLE = "unlabeled"

_CONSUMED_ENTRY_KEYS = {"message", "type"}
_CONSUMED_MESSAGE_KEYS = {"role", "content"}


def _non_empty_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _resolve_role(entry: LogEntry) -> str:
    message = entry.message
    if isinstance(message, dict):
        role = _non_empty_str(message.get("role"))
        if role:
            return role
    return _non_empty_str(entry.type) or UNLABELED_ROLE


def classify_block(block: Any):
    """Map one raw content item onto a ContentBlock. Never raises."""
    if isinstance(block, str):
        return TextBlock(text=block)
    if not isinstance(block, dict):
        return OtherBlock(raw=block)

    block_type = block.get("type")
    if block_type == "text":
        text = block.get("text")
        if isinstance(text, str):
            return TextBlock(text=text)
    elif block_type == "tool_use":
        name = block.get("name")
        if isinstance(name, str):
            return ToolUseBlock(
                id=_optional_str(block.get("id")),
                name=name,
                input=block.get("input", {}),
            )
    elif block_type == "tool_result":
        is_error = block.get("is_error")
        return ToolResultBlock(
            tool_use_id=_optional_str(block.get("tool_use_id")),
            content=block.get("content"),
            is_error=is_error if isinstance(is_error, bool) else None,
        )
    return OtherBlock(raw=block)


def _extract_blocks(message: Any) -> list:
    if isinstance(message, str):
        return [TextBlock(text=message)]
    if not isinstance(message, dict):
        return []

    content = message.get("content")
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if isinstance(content, list):
        return [classify_block(item) for item in content]
    if content is None:
        return []
    return [OtherBlock(raw=content)]


def project_turn(entry: LogEntry, index: int) -> ConversationTurn:
    message = entry.message
    metadata = {key: value for key, value in entry.data.items() if key not in _CONSUMED_ENTRY_KEYS}
    message_metadata: dict[str, Any] = {}
    if isinstance(message, dict):
        message_metadata = {
            key: value for key, value in message.items() if key not in _CONSUMED_MESSAGE_KEYS
        }
    elif message is not None and not isinstance(message, str):
        # No readable content; surfaced as metadata.
        metadata["message"] = message

    return ConversationTurn(
        index=index,
        line_number=entry.line_number,
        role=_resolve_role(entry),
        entry_type=entry.type,
        blocks=_extract_blocks(message),
        metadata=metadata,
        message_metadata=message_metadata,
    )


def project_conversation(entries: Iterable[LogEntry]) -> list[ConversationTurn]:
    """One turn per entry, in entry order. Empty turns are kept."""
    return [project_turn(entry, index) for index, entry in enumerate(entries)]
