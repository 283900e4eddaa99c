"""Snapshot API: one-shot reads of tasks, repositories, logs, specs and students."""
from __future__ import annotations

import logging
import re

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from agentboard.config import BoardConfig
from agentboard.models import ConversationTurn, ReposFile, Student, TasksFile, TaskSummary
from agentboard.observability import record_parser_failure
from agentboard.parsers.conversation import project_conversation
from agentboard.parsers.log_entries import parse_log_entries
from agentboard.snapshots import (
    NO_LOGS_PLACEHOLDER,
    read_log_text,
    read_repos_file,
    read_spec_text,
    read_student,
    read_tasks_file,
    read_text_or_none,
    summarize_tasks,
)
from agentboard.validation import SchemaViolation

logger = logging.getLogger("agentboard.api")

api_router = APIRouter(prefix="/api", tags=["board"])

_STUDENT_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def get_board_config(request: Request) -> BoardConfig:
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(status_code=503, detail="Board configuration not initialized")
    return config


def _schema_error(exc: SchemaViolation, what: str) -> HTTPException:
    logger.error(f"{what} failed validation: {exc}")
    record_parser_failure(exc.shape)
    return HTTPException(status_code=500, detail=exc.to_detail())


def _read_error(exc: Exception, what: str) -> HTTPException:
    logger.error(f"Error reading {what}: {exc}")
    return HTTPException(
        status_code=500,
        detail={"error": "read_failed", "message": f"Failed to read {what}"},
    )


@api_router.get("/tasks", response_model=TasksFile)
async def get_tasks(request: Request):
    """Validated tasks file."""
    config = get_board_config(request)
    try:
        return await read_tasks_file(config.tasks_path)
    except SchemaViolation as exc:
        raise _schema_error(exc, "tasks file")
    except (OSError, UnicodeDecodeError) as exc:
        raise _read_error(exc, "tasks")


@api_router.get("/tasks/summary", response_model=TaskSummary)
async def get_task_summary(request: Request):
    """Per-status counts and completions per day, for the board header."""
    config = get_board_config(request)
    try:
        tasks_file = await read_tasks_file(config.tasks_path)
    except SchemaViolation as exc:
        raise _schema_error(exc, "tasks file")
    except (OSError, UnicodeDecodeError) as exc:
        raise _read_error(exc, "tasks")
    return summarize_tasks(tasks_file)


@api_router.get("/tasks/{task_id}/spec", response_class=PlainTextResponse)
async def get_task_spec(request: Request, task_id: int):
    config = get_board_config(request)
    try:
        return PlainTextResponse(await read_spec_text(config.spec_path(task_id)))
    except (OSError, UnicodeDecodeError) as exc:
        logger.error(f"Error reading spec file for task {task_id}: {exc}")
        raise HTTPException(
            status_code=500,
            detail={"error": "read_failed", "message": "Failed to read spec file"},
        )


@api_router.get("/repos", response_model=ReposFile)
async def get_repos(request: Request):
    config = get_board_config(request)
    try:
        return await read_repos_file(config.repos_path)
    except SchemaViolation as exc:
        raise _schema_error(exc, "repos file")
    except (OSError, UnicodeDecodeError) as exc:
        raise _read_error(exc, "repositories")


@api_router.get("/logs/{task_id}", response_class=PlainTextResponse)
async def get_task_log(request: Request, task_id: int):
    """Current agent log text. A log that does not exist yet is not an error."""
    config = get_board_config(request)
    try:
        text = await read_text_or_none(config.log_path(task_id), errors="replace")
    except (OSError, UnicodeDecodeError) as exc:
        raise _read_error(exc, "log file")
    return PlainTextResponse(NO_LOGS_PLACEHOLDER if text is None else text)


@api_router.get("/logs/{task_id}/conversation", response_model=list[ConversationTurn])
async def get_task_conversation(
    request: Request,
    task_id: int,
    include_progress: bool = Query(False, description="Keep progress/heartbeat records"),
):
    config = get_board_config(request)
    try:
        text = await read_log_text(config.log_path(task_id))
    except (OSError, UnicodeDecodeError) as exc:
        raise _read_error(exc, "log file")
    return project_conversation(parse_log_entries(text, include_progress=include_progress))


@api_router.get("/students/{name}", response_model=Student)
async def get_student(request: Request, name: str):
    config = get_board_config(request)
    slug = name.strip().lower()
    if not _STUDENT_NAME_PATTERN.match(slug):
        raise HTTPException(status_code=404, detail="Student not found")
    try:
        student = await read_student(config.student_path(slug))
    except SchemaViolation as exc:
        raise _schema_error(exc, f"student file {slug}")
    except (OSError, UnicodeDecodeError) as exc:
        raise _read_error(exc, "student data")
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student
