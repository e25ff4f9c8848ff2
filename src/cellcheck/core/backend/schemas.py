from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cellcheck.core.data.schemas import DataRow
from cellcheck.core.validation.schemas import AnalysisResult


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TaskRequest(_WireModel):
    prompt: str
    selected_rows: list[int] = Field(default_factory=list)
    selected_columns: list[str] = Field(default_factory=list)
    data: list[DataRow] = Field(default_factory=list)
    session_id: str | None = None
    batch_mode: bool | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TaskCreated(_WireModel):
    task_id: str
    status: str | None = None
    message: str | None = None


class TaskStatusResponse(_WireModel):
    task_id: str | None = None
    status: str
    result: Any = None
    error: str | None = None
    events: list[dict[str, Any]] = Field(default_factory=list)

    def analysis_result(self) -> AnalysisResult | None:
        """Parse ``result`` when it is object-shaped and carries an analysis."""
        return parse_analysis_result(self.result)

    def result_message(self) -> str:
        return self.result if isinstance(self.result, str) else "Analysis completed"


class BatchCreated(_WireModel):
    batch_id: str
    task_ids: list[str] = Field(default_factory=list)
    task_count: int | None = None
    message: str | None = None


class BatchCounts(_WireModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class BatchTask(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    result: Any = None
    error_message: str | None = None


class BatchStatus(_WireModel):
    batch_id: str | None = None
    status: str
    counts: BatchCounts = Field(default_factory=BatchCounts)
    tasks: list[BatchTask] = Field(default_factory=list)

    def completed_task(self) -> BatchTask | None:
        return next((task for task in self.tasks if task.status == "completed"), None)

    def failed_task(self) -> BatchTask | None:
        return next((task for task in self.tasks if task.status == "failed"), None)


class SessionTask(BaseModel):
    """One task recorded against a session, as listed by the service."""

    model_config = ConfigDict(extra="ignore")

    id: str
    prompt: str = ""
    status: Literal["pending", "processing", "completed", "failed"]
    created_at: str | None = None
    completed_at: str | None = None
    execution_time_ms: int | None = None
    analysis: Any = None
    error_message: str | None = None


class SessionInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    description: str | None = None


def parse_analysis_result(value: Any, *, require_analysis: bool = True) -> AnalysisResult | None:
    if not isinstance(value, dict):
        return None
    if require_analysis and "analysis" not in value:
        return None
    return AnalysisResult.model_validate(value)


class StoredSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[DataRow] = Field(default_factory=list)
    description: str | None = None


class SessionData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session: SessionInfo
    data: list[DataRow] = Field(default_factory=list)
    column_names: list[str] = Field(default_factory=list)
    snapshots: list[StoredSnapshot] = Field(default_factory=list)
