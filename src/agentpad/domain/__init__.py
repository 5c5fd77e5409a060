"""Domain models for agentpad."""

from agentpad.domain.models import (
    InferenceRequest,
    InferenceResult,
    RunResult,
    RunStatus,
    Scratchpad,
    ScratchpadTask,
    SubagentRun,
    Task,
    TaskStatus,
)

__all__ = [
    "InferenceRequest",
    "InferenceResult",
    "RunResult",
    "RunStatus",
    "Scratchpad",
    "ScratchpadTask",
    "SubagentRun",
    "Task",
    "TaskStatus",
]
