from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from cellcheck.core.backend.schemas import (
    BatchCreated,
    BatchStatus,
    SessionData,
    TaskCreated,
    TaskRequest,
    TaskStatusResponse,
)
from cellcheck.core.config import Settings


class FakeProgressStream:
    """Replays canned messages.

    With a ``gate`` the stream holds its frames until the gate opens, and keeps
    holding them through cancellation, like a transport that hands over a
    buffered frame after the reader has been torn down.
    """

    def __init__(self, messages: list[dict[str, Any]], gate: asyncio.Event | None = None) -> None:
        self.messages = list(messages)
        self.gate = gate
        self.closed = False
        self.yielded = 0
        self.finished = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        try:
            for message in self.messages:
                if self.gate is not None:
                    await self._wait_for_gate()
                else:
                    if self.closed:
                        return
                    await asyncio.sleep(0)
                self.yielded += 1
                yield message
        finally:
            self.finished.set()

    async def _wait_for_gate(self) -> None:
        while not self.gate.is_set():
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                continue

    async def aclose(self) -> None:
        self.closed = True
        self.finished.set()


class FakeBackend:
    """In-memory stand-in for the analysis service.

    ``statuses`` maps a task id to the responses returned by successive polls;
    the last response repeats. Tasks without an entry stay ``running``.
    """

    def __init__(self) -> None:
        self.requests: list[TaskRequest] = []
        self.create_error: Exception | None = None
        self.statuses: dict[str, list[TaskStatusResponse]] = {}
        self.poll_error: Exception | None = None
        self.poll_calls: list[str] = []
        self.stream_messages: dict[str, list[dict[str, Any]]] = {}
        self.stream_gates: dict[str, asyncio.Event] = {}
        self.streams: list[FakeProgressStream] = []
        self.wait_for_stream = False
        self.batches: list[tuple[list[TaskRequest], str | None]] = []
        self.create_batch_error: Exception | None = None
        self.batch_statuses: list[BatchStatus] = []
        self.batch_poll_error: Exception | None = None
        self.snapshots: list[tuple[str, list[dict[str, Any]], str]] = []
        self.snapshot_error: Exception | None = None
        self.sessions: dict[str, SessionData] = {}

    async def create_task(self, request: TaskRequest) -> TaskCreated:
        self.requests.append(request)
        if self.create_error is not None:
            raise self.create_error
        return TaskCreated(task_id=f"task-{len(self.requests)}", status="running")

    async def get_task_status(self, task_id: str) -> TaskStatusResponse:
        self.poll_calls.append(task_id)
        if self.poll_error is not None:
            raise self.poll_error
        if self.wait_for_stream and self.streams:
            await self.streams[-1].finished.wait()
        queue = self.statuses.get(task_id)
        if not queue:
            await asyncio.sleep(0)
            return TaskStatusResponse(task_id=task_id, status="running")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def open_progress_stream(self, task_id: str) -> FakeProgressStream:
        stream = FakeProgressStream(self.stream_messages.get(task_id, []), self.stream_gates.get(task_id))
        self.streams.append(stream)
        return stream

    async def create_batch(self, tasks: list[TaskRequest], session_id: str | None = None) -> BatchCreated:
        self.batches.append((tasks, session_id))
        if self.create_batch_error is not None:
            raise self.create_batch_error
        return BatchCreated(batch_id="batch-1", task_ids=["batch-task-1"], task_count=len(tasks))

    async def get_batch_status(self, batch_id: str) -> BatchStatus:
        if self.batch_poll_error is not None:
            raise self.batch_poll_error
        await asyncio.sleep(0)
        if len(self.batch_statuses) > 1:
            return self.batch_statuses.pop(0)
        if self.batch_statuses:
            return self.batch_statuses[0]
        return BatchStatus(batch_id=batch_id, status="processing")

    async def save_snapshot(self, session_id: str, rows: list[dict[str, Any]], description: str) -> None:
        if self.snapshot_error is not None:
            raise self.snapshot_error
        self.snapshots.append((session_id, rows, description))

    async def get_session(self, session_id: str) -> SessionData:
        return self.sessions[session_id]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        poll_initial_delay_s=0.0,
        poll_interval_s=0.0,
        batch_initial_delay_s=0.0,
        batch_poll_interval_s=0.0,
    )


@pytest.fixture(autouse=True)
def isolate_cellcheck_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CELLCHECK_API_URL",
        "CELLCHECK_MAX_POLLS",
        "CELLCHECK_ANALYSIS_SOURCE",
        "CELLCHECK_LOG_TO_FILE",
        "CELLCHECK_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_cellcheck_logger():
    logger = logging.getLogger("cellcheck")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.propagate = propagate
    logger.setLevel(level)
