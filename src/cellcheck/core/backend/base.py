from __future__ import annotations

from typing import Any, AsyncIterator, Protocol

from cellcheck.core.data.schemas import DataRow

from .schemas import BatchCreated, BatchStatus, SessionData, TaskCreated, TaskRequest, TaskStatusResponse


class ProgressStream(Protocol):
    def __aiter__(self) -> AsyncIterator[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


class AnalysisBackend(Protocol):
    async def create_task(self, request: TaskRequest) -> TaskCreated: ...

    async def get_task_status(self, task_id: str) -> TaskStatusResponse: ...

    def open_progress_stream(self, task_id: str) -> ProgressStream: ...

    async def create_batch(self, tasks: list[TaskRequest], session_id: str | None = None) -> BatchCreated: ...

    async def get_batch_status(self, batch_id: str) -> BatchStatus: ...

    async def save_snapshot(self, session_id: str, rows: list[DataRow], description: str) -> None: ...

    async def get_session(self, session_id: str) -> SessionData: ...
