from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cellcheck.core.data.schemas import Selection, utc_now

TaskStatus = Literal["pending", "running", "completed", "failed"]
StepKind = Literal["search", "analysis", "code", "validation"]
StepStatus = Literal["pending", "running", "completed", "error"]
EventKind = Literal["tool_start", "tool_complete", "tool_error", "analysis_start", "analysis_complete"]

START_EVENTS = frozenset({"tool_start", "analysis_start"})
COMPLETE_EVENTS = frozenset({"tool_complete", "analysis_complete"})
ERROR_EVENTS = frozenset({"tool_error"})


class TaskPhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    BATCH_PENDING = "batch_pending"
    BATCH_RUNNING = "batch_running"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT_PHASES = frozenset({TaskPhase.PENDING, TaskPhase.RUNNING, TaskPhase.BATCH_PENDING, TaskPhase.BATCH_RUNNING})
TERMINAL_PHASES = frozenset({TaskPhase.COMPLETED, TaskPhase.FAILED})


class TaskResult(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None


class Task(BaseModel):
    id: str
    prompt: str
    selection: Selection = Field(default_factory=Selection)
    status: TaskStatus = "pending"
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    result: TaskResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {"completed", "failed"}


class Step(BaseModel):
    id: str
    kind: StepKind
    description: str
    status: StepStatus = "pending"
    details: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class RawProgressEvent(BaseModel):
    """One progress notification from the push channel.

    The wire form names the event kind ``type``; ``kind`` is accepted too.
    """

    model_config = ConfigDict(extra="ignore")

    kind: EventKind
    tool: str | None = None
    description: str = ""
    details: str | None = None
    data: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_wire_type(cls, value: Any) -> Any:
        if isinstance(value, dict) and "kind" not in value and "type" in value:
            value = {**value, "kind": value["type"]}
        return value
