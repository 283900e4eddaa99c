"""Pydantic models for the files agentboard observes and the payloads it serves."""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

TaskStatus = Literal["todo", "in_progress", "completed", "failed"]
MergeStatus = Literal["waiting", "merged", "conflict"]

TASK_STATUSES: tuple[str, ...] = ("todo", "in_progress", "completed", "failed")


# ── Task-related models ────────────────────────────────────────────

class TasksConfig(BaseModel):
    max_parallel_tasks: int = Field(..., ge=0)


class TaskRecord(BaseModel):
    # Nullable fields have no default: the key must be present, even if null.
    id: int
    repo: str
    repo_path: str
    spec_file: str
    log_file: str
    title: str
    status: TaskStatus
    branch: Optional[str]
    agent_id: Optional[str]
    worktree_path: Optional[str]
    merge_status: Optional[MergeStatus]
    created_at: str
    assigned_at: Optional[str]
    completed_at: Optional[str]
    error: Optional[str]


class TasksFile(BaseModel):
    config: TasksConfig
    next_id: int
    tasks: list[TaskRecord]

    @classmethod
    def placeholder(cls) -> "TasksFile":
        """What the board shows before the external writer creates the file."""
        return cls(config=TasksConfig(max_parallel_tasks=0), next_id=1, tasks=[])


class TaskSummary(BaseModel):
    counts: dict[str, int]
    total: int
    completed_by_day: dict[str, int] = Field(default_factory=dict)


# ── Repository models ──────────────────────────────────────────────

class Repository(BaseModel):
    name: str
    path: str


class ReposFile(BaseModel):
    repositories: list[Repository]


# ── Student models ─────────────────────────────────────────────────

class StudentDecision(BaseModel):
    task_id: int
    decision: str
    rationale: str = ""
    timestamp: str = ""


class StudentLearning(BaseModel):
    task_id: int
    learning: str
    context: str = ""
    timestamp: str = ""


class StudentTaskHistory(BaseModel):
    task_id: int
    title: str
    completed_at: str = ""
    outcome: str = ""


class StudentContext(BaseModel):
    decisions: list[StudentDecision] = Field(default_factory=list)
    learnings: list[StudentLearning] = Field(default_factory=list)
    project_state: str = ""
    last_updated: Optional[str] = None


class Student(BaseModel):
    name: str
    role: str
    focus: str
    repo: Optional[str] = None
    context: StudentContext = Field(default_factory=StudentContext)
    task_history: list[StudentTaskHistory] = Field(default_factory=list)


# ── Conversation models ────────────────────────────────────────────

class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: Optional[str] = None
    name: str
    input: Any = None


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: Optional[str] = None
    content: Any = None
    is_error: Optional[bool] = None


class OtherBlock(BaseModel):
    type: Literal["other"] = "other"
    raw: Any = None


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock, OtherBlock],
    Field(discriminator="type"),
]


class ConversationTurn(BaseModel):
    index: int
    line_number: int
    role: str  # "user" | "assistant" | "system" | entry type | "unlabeled"
    entry_type: Optional[str] = None
    blocks: list[ContentBlock] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    message_metadata: dict[str, Any] = Field(default_factory=dict)
