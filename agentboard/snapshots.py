"""Read the files the external task runner writes.

Every reader re-reads from disk; nothing is cached between calls. A missing
file is an expected transient state and yields a placeholder, not an error.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from pathlib import Path
from typing import Optional

from agentboard.date_utils import utc_day
from agentboard.models import TASK_STATUSES, ReposFile, Student, TasksFile, TaskSummary
from agentboard.validation import decode_and_validate

logger = logging.getLogger("agentboard.snapshots")

NO_LOGS_PLACEHOLDER = "No logs yet..."
NO_SPEC_PLACEHOLDER = "No specification available"


async def read_text_or_none(path: Path, errors: str = "strict") -> Optional[str]:
    """Return the file's text, or None when it does not exist (yet)."""
    try:
        return await asyncio.to_thread(path.read_text, encoding="utf-8", errors=errors)
    except FileNotFoundError:
        return None


async def read_tasks_file(path: Path) -> TasksFile:
    """Load and validate the tasks file. Raises `SchemaViolation` on a bad file."""
    text = await read_text_or_none(path)
    if text is None:
        return TasksFile.placeholder()
    return decode_and_validate(text, TasksFile).unwrap()


async def read_repos_file(path: Path) -> ReposFile:
    text = await read_text_or_none(path)
    if text is None:
        return ReposFile(repositories=[])
    return decode_and_validate(text, ReposFile).unwrap()


async def read_student(path: Path) -> Optional[Student]:
    text = await read_text_or_none(path)
    if text is None:
        return None
    return decode_and_validate(text, Student).unwrap()


async def read_log_text(path: Path) -> str:
    # A read can land mid-append and split a multi-byte character.
    text = await read_text_or_none(path, errors="replace")
    return text if text is not None else ""


async def read_spec_text(path: Path) -> str:
    text = await read_text_or_none(path)
    return text if text is not None else NO_SPEC_PLACEHOLDER


def summarize_tasks(tasks_file: TasksFile) -> TaskSummary:
    counts = {status: 0 for status in TASK_STATUSES}
    by_day: Counter[str] = Counter()
    for task in tasks_file.tasks:
        counts[task.status] += 1
        if task.status == "completed" and task.completed_at:
            day = utc_day(task.completed_at)
            if day:
                by_day[day] += 1
            else:
                logger.debug(f"Task {task.id} has unparseable completed_at {task.completed_at!r}")
    return TaskSummary(
        counts=counts,
        total=len(tasks_file.tasks),
        completed_by_day=dict(sorted(by_day.items())),
    )
