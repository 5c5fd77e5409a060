"""Core domain models for agentpad."""

import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

RUN_ID_ALPHABET = string.ascii_lowercase + string.digits
RUN_ID_LENGTH = 10


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    """Generate an opaque subagent run id (``run-`` plus 10 lowercase alphanumerics)."""
    return "run-" + "".join(secrets.choice(RUN_ID_ALPHABET) for _ in range(RUN_ID_LENGTH))


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"  # Locked
    ARCHIVED = "archived"  # Locked


LOCKED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.ARCHIVED})
UNLOCK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


class Task(BaseModel):
    """A node in a project's task forest.

    Attributes:
        project_id: Owning project
        task_id: Identifier, unique within the project
        task_info: Free-text description
        parent_id: task_id of the parent task in the same project (optional)
        status: Lifecycle state; completed and archived tasks are locked
        extra_note: Optional free-text note
    """

    project_id: str
    task_id: str
    task_info: str
    parent_id: str | None = None
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    extra_note: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("project_id", "task_id", "task_info")
    @classmethod
    def validate_required_text(cls, v: str) -> str:
        """Strip whitespace and reject empty values."""
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, v: str | None) -> str | None:
        """Normalize blank parent ids to None."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def is_locked(self) -> bool:
        """Whether the task is signed off (completed or archived)."""
        return self.status in LOCKED_STATUSES

    model_config = ConfigDict()


class AddTasksResult(BaseModel):
    """Outcome of a bulk task insert."""

    added: list[str] = Field(default_factory=list)
    exists: list[str] = Field(default_factory=list)
    invalid: list[dict[str, Any]] = Field(default_factory=list)


class TaskStateChange(BaseModel):
    """A bulk, match-based task update request.

    Targets are resolved from ``match_ids`` (exact task ids) and
    ``match_text`` (case-insensitive substrings of ``task_info``).
    Only the fields that were explicitly supplied are applied; use
    ``requested_fields()`` to tell "not supplied" from "set to None".
    """

    match_ids: list[str] = Field(default_factory=list)
    match_text: list[str] = Field(default_factory=list)
    state: TaskStatus | None = None
    task_info: str | None = None
    parent_id: str | None = None
    extra_note: str | None = None

    @field_validator("match_ids", "match_text")
    @classmethod
    def clean_matchers(cls, v: list[str]) -> list[str]:
        """Drop blank matchers and surrounding whitespace."""
        return [item.strip() for item in v if item and item.strip()]

    def requested_fields(self) -> dict[str, Any]:
        """Non-status field changes that were explicitly supplied."""
        fields = {}
        for name in ("task_info", "parent_id", "extra_note"):
            if name in self.model_fields_set:
                fields[name] = getattr(self, name)
        return fields

    @property
    def has_state(self) -> bool:
        return self.state is not None


class SetTasksStateResult(BaseModel):
    """Per-item outcome of a bulk task update."""

    changed_ids: list[str] = Field(default_factory=list)
    not_matched: list[str] = Field(default_factory=list)
    forbidden: list[str] = Field(default_factory=list)
    cascaded_ids: list[str] = Field(default_factory=list)


class ScratchpadTaskStatus(str, Enum):
    """Scratchpad entry states."""

    OPEN = "open"
    COMPLETE = "complete"


class ScratchpadTask(BaseModel):
    """One working entry in a scratchpad."""

    task_id: str
    status: ScratchpadTaskStatus = Field(default=ScratchpadTaskStatus.OPEN)
    task_info: str
    scratchpad: str = ""
    comments: str = ""

    @field_validator("task_id", "task_info")
    @classmethod
    def validate_required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class Scratchpad(BaseModel):
    """Bounded per-project task buffer with shared append-only memory."""

    project_id: str
    scratchpad_id: str
    tasks: list[ScratchpadTask] = Field(default_factory=list)
    common_memory: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_task(self, task_id: str) -> ScratchpadTask | None:
        """Return the entry with the given task_id, if present."""
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    model_config = ConfigDict()


class ScratchpadInitResult(BaseModel):
    """Outcome of scratchpad creation."""

    scratchpad: Scratchpad
    invalid: list[dict[str, Any]] = Field(default_factory=list)


class ScratchpadUpdateResult(BaseModel):
    """Outcome of a scratchpad entry update."""

    scratchpad: Scratchpad
    updated: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)


class RunStatus(str, Enum):
    """Subagent run lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"  # Terminal
    FAILURE = "failure"  # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.FAILURE)


TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCESS, RunStatus.FAILURE})


class SubagentRun(BaseModel):
    """Audit and polling handle for one subagent execution."""

    project_id: str
    run_id: str = Field(default_factory=new_run_id)
    user_id: str | None = None
    scratchpad_id: str
    task_id: str
    status: RunStatus = Field(default=RunStatus.PENDING)
    error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict()


class RunResult(BaseModel):
    """Caller-facing result of a run request or status poll."""

    run_id: str | None = None
    status: RunStatus
    error: str | None = None

    @classmethod
    def failure(cls, error: str, run_id: str | None = None) -> "RunResult":
        return cls(run_id=run_id, status=RunStatus.FAILURE, error=error)

    def to_payload(self) -> dict[str, Any]:
        """Serialize without empty fields."""
        return self.model_dump(mode="json", exclude_none=True)


class SubagentRunRequest(BaseModel):
    """Inputs of a scratchpad subagent run."""

    project_id: str = ""
    scratchpad_id: str = ""
    task_id: str = ""
    prompt: str = ""
    sys_prompt: str | None = None
    tool: str | list[str] | None = None
    file_path: str | None = None
    file_id: str | None = None

    @field_validator("project_id", "scratchpad_id", "task_id", "prompt", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()


class FileAttachment(BaseModel):
    """A file loaded for inclusion in an inference request."""

    name: str
    mime_type: str
    kind: str  # "pdf" or "text"
    text: str | None = None
    base64_data: str | None = None


class InferenceRequest(BaseModel):
    """Provider-agnostic inference call."""

    api_key: str
    model: str
    system_prompt: str
    user_prompt: str
    base_url: str | None = None
    tools: list[str] = Field(default_factory=list)
    mcp_servers: list[str] | None = None  # None selects every configured server
    timeout_seconds: float = 120.0
    attachment: FileAttachment | None = None


class ToolCall(BaseModel):
    """A tool invocation made during an inference call."""

    server: str | None = None
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class InferenceResult(BaseModel):
    """Provider-agnostic inference output."""

    text: str = ""
    urls: list[str] = Field(default_factory=list)
    code_snippets: list[str] = Field(default_factory=list)
    code_results: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCall] = Field(default_factory=list)
