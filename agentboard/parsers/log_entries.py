"""Split agent log text into decoded JSONL entries.

Log files are appended to by the task runner while we read them, so the last
line is often a half-written record. Each line is decoded on its own: a line
that fails to decode is dropped and the scan carries on with the next one.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from agentboard.observability import record_parser_failure

logger = logging.getLogger("agentboard.parser")

# Non-conversational bookkeeping records.
PROGRESS_ENTRY_TYPES = frozenset({"progress", "heartbeat", "file-history-snapshot"})


@dataclass(frozen=True)
class LogEntry:
    line_number: int
    data: dict[str, Any]

    @property
    def type(self) -> Optional[str]:
        value = self.data.get("type")
        return value if isinstance(value, str) else None

    @property
    def message(self) -> Any:
        return self.data.get("message")

    @property
    def is_progress(self) -> bool:
        return self.type in PROGRESS_ENTRY_TYPES


def _split_lines(text: str) -> Iterator[tuple[int, str]]:
    # JSON strings may legally carry U+2028 and friends, so only "\n" ends a record.
    for idx, line in enumerate(text.split("\n"), start=1):
        yield idx, line.rstrip("\r")


def _decode_line(line: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(value, dict):
        return None
    return value


class LogEntryStream(Iterable[LogEntry]):
    """Lazy, restartable view over the entries of one log text.

    Every iteration rescans `text` from the top, so the stream can be consumed
    more than once.
    """

    def __init__(self, text: str, include_progress: bool = False):
        self.text = text or ""
        self.include_progress = include_progress
        self.skipped: list[int] = []

    def __iter__(self) -> Iterator[LogEntry]:
        skipped: list[int] = []
        for line_number, line in _split_lines(self.text):
            if not line.strip():
                continue
            data = _decode_line(line)
            if data is None:
                skipped.append(line_number)
                continue
            entry = LogEntry(line_number=line_number, data=data)
            if entry.is_progress and not self.include_progress:
                continue
            yield entry
        self.skipped = skipped
        if skipped:
            logger.debug(f"Skipped {len(skipped)} undecodable log line(s): {skipped}")
            record_parser_failure("log_entries", count=len(skipped))


def parse_log_entries(text: str, include_progress: bool = False) -> LogEntryStream:
    return LogEntryStream(text, include_progress=include_progress)
