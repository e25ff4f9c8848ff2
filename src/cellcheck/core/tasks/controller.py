"""Task lifecycle: submission, push/poll tracking and the batch fallback.

A submitted task is watched over two independent channels. The progress
stream only feeds the step reconciler; the status poll is the only path that
may settle the task as completed or failed. Every submission bumps an epoch
and callbacks from an older epoch return without touching state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError

from cellcheck.core.backend.base import AnalysisBackend, ProgressStream
from cellcheck.core.backend.schemas import BatchStatus, TaskRequest, TaskStatusResponse, parse_analysis_result
from cellcheck.core.config import Settings, load_settings
from cellcheck.core.data.schemas import DataRow, Selection, utc_now
from cellcheck.core.http.errors import is_rate_limit_error
from cellcheck.core.logging.context import log_context
from cellcheck.core.validation.schemas import AnalysisResult

from .reconciler import StepReconciler
from .schemas import IN_FLIGHT_PHASES, RawProgressEvent, Step, Task, TaskPhase, TaskResult

logger = logging.getLogger("cellcheck.tasks")

ResultCallback = Callable[[AnalysisResult, str, str], None]

STARTING_STEP = "Starting analysis..."
BATCH_STEP = "Processing via Message Batches API (may take a few minutes)"


class TaskController:
    def __init__(
        self,
        backend: AnalysisBackend,
        on_result: ResultCallback,
        *,
        on_history_changed: Callable[[], None] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.backend = backend
        self.on_result = on_result
        self.on_history_changed = on_history_changed
        self.settings = settings or load_settings()
        self.task: Task | None = None
        self.phase = TaskPhase.IDLE
        self.error: str | None = None
        self.history_tick = 0
        self._reconciler = StepReconciler()
        self._epoch = 0
        self._stream: ProgressStream | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def steps(self) -> list[Step]:
        return self._reconciler.steps

    @property
    def is_running(self) -> bool:
        return self.phase in IN_FLIGHT_PHASES

    async def submit(
        self,
        prompt: str,
        selection: Selection,
        data_slice: list[DataRow],
        session_id: str | None = None,
        *,
        replace: bool = False,
        batch_mode: bool | None = None,
    ) -> bool:
        """Start a task. Returns False when another task is in flight and ``replace`` is off."""
        if self.is_running:
            if not replace:
                logger.info("task_submit_ignored", extra={"extra_fields": {"phase": self.phase.value}})
                return False
            await self._abandon()

        self._epoch += 1
        epoch = self._epoch
        reconciler = StepReconciler()
        self._reconciler = reconciler
        self.error = None
        self.task = Task(id="pending", prompt=prompt, selection=selection.model_copy(deep=True))
        self.phase = TaskPhase.PENDING
        initial = reconciler.add_step("analysis", STARTING_STEP, "running", "Preparing request")

        request = TaskRequest(
            prompt=prompt,
            selected_rows=list(selection.rows),
            selected_columns=list(selection.columns),
            data=data_slice,
            session_id=session_id,
            batch_mode=batch_mode,
        )
        try:
            created = await self.backend.create_task(request)
        except Exception as exc:
            if not self._is_current(epoch):
                return False
            if is_rate_limit_error(exc):
                reconciler.update_step(initial.id, status="completed", details="Rate limited, switching to batch processing")
                await self._start_batch(epoch, request)
                return True
            message = str(exc) or "Failed to execute task"
            logger.warning("task_create_failed", extra={"extra_fields": {"error": message}})
            reconciler.update_step(initial.id, status="error", details=message)
            self._settle(epoch, TaskResult(success=False, error=message))
            return True

        if not self._is_current(epoch):
            return False

        task_id = created.task_id
        self.task = self.task.model_copy(update={"id": task_id, "status": "running"})
        self.phase = TaskPhase.RUNNING
        reconciler.update_step(initial.id, status="completed", details=f"Task created: {task_id}")
        with log_context(task_id=task_id, session_id=session_id):
            logger.info("task_running")
            stream = self.backend.open_progress_stream(task_id)
            self._stream = stream
            self._stream_task = asyncio.create_task(self._consume_stream(epoch, stream, reconciler))
            self._poll_task = asyncio.create_task(self._poll_task_status(epoch, task_id))
        return True

    async def wait(self) -> None:
        """Wait until the background channels of the current task have finished."""
        while True:
            pending = [task for task in (self._poll_task, self._stream_task) if task is not None and not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel(self) -> None:
        if not self.is_running:
            return
        epoch = self._epoch
        await self._abandon()
        self._settle(epoch, TaskResult(success=False, error="Task cancelled"), force=True)

    async def clear(self) -> None:
        await self._abandon()
        self.task = None
        self.error = None
        self.phase = TaskPhase.IDLE
        self._reconciler = StepReconciler()

    async def aclose(self) -> None:
        await self._abandon()

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    async def _abandon(self) -> None:
        self._epoch += 1
        await self._close_channels()

    async def _close_channels(self) -> None:
        stream, stream_task, poll_task = self._stream, self._stream_task, self._poll_task
        self._stream = None
        self._stream_task = None
        self._poll_task = None
        current = asyncio.current_task()
        for task in (stream_task, poll_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        if stream is not None:
            try:
                await stream.aclose()
            except Exception:
                logger.warning("stream_close_failed", exc_info=True)

    async def _consume_stream(self, epoch: int, stream: ProgressStream, reconciler: StepReconciler) -> None:
        try:
            async for message in stream:
                if not self._is_current(epoch):
                    return
                if not self._handle_stream_message(message, reconciler):
                    return
        except asyncio.CancelledError:
            raise
        except Exception:
            # Progress is advisory; the poll loop still settles the task.
            logger.warning("stream_failed", exc_info=True)
        finally:
            try:
                await stream.aclose()
            except Exception:
                logger.warning("stream_close_failed", exc_info=True)

    def _handle_stream_message(self, message: dict[str, Any], reconciler: StepReconciler) -> bool:
        """Apply one stream message; returns False once the stream should stop."""
        kind = message.get("type")
        if kind == "connected":
            logger.debug("stream_connected", extra={"extra_fields": {"stream_task_id": message.get("taskId")}})
            return True
        if kind == "task_event":
            try:
                event = RawProgressEvent.model_validate(message.get("event"))
            except ValidationError:
                logger.warning("stream_event_invalid", extra={"extra_fields": {"event": str(message.get("event"))[:200]}})
                return True
            reconciler.apply(event)
            return True
        if kind == "task_complete":
            logger.info("stream_task_complete", extra={"extra_fields": {"status": message.get("status")}})
            return False
        if kind == "error":
            logger.warning("stream_error", extra={"extra_fields": {"message": message.get("message")}})
            return False
        return True

    async def _poll_task_status(self, epoch: int, task_id: str) -> None:
        with log_context(task_id=task_id):
            await asyncio.sleep(self.settings.poll_initial_delay_s)
            polls = 0
            while self._is_current(epoch):
                polls += 1
                try:
                    status = await self.backend.get_task_status(task_id)
                except Exception as exc:
                    if self._is_current(epoch):
                        logger.warning("task_poll_failed", extra={"extra_fields": {"error": str(exc)}})
                        await self._finish(epoch, TaskResult(success=False, error=str(exc) or "Task failed"))
                    return
                if not self._is_current(epoch):
                    return
                if status.status == "completed":
                    await self._complete(epoch, task_id, status)
                    return
                if status.status == "failed":
                    await self._finish(epoch, TaskResult(success=False, error=status.error or "Task failed"))
                    return
                if self._poll_limit_reached(polls):
                    await self._finish(epoch, TaskResult(success=False, error="Timed out waiting for task"))
                    return
                await asyncio.sleep(self.settings.poll_interval_s)

    async def _complete(self, epoch: int, task_id: str, status: TaskStatusResponse) -> None:
        try:
            result = status.analysis_result()
        except ValidationError:
            logger.warning("task_result_invalid", exc_info=True)
            result = None
        outcome = TaskResult(success=True, message=status.result_message())
        if result is not None:
            failure = self._deliver(result, task_id)
            if failure is not None:
                outcome = TaskResult(success=False, error=failure)
        logger.info("task_poll_completed", extra={"extra_fields": {"has_analysis": result is not None}})
        await self._finish(epoch, outcome)

    async def _start_batch(self, epoch: int, request: TaskRequest) -> None:
        self.phase = TaskPhase.BATCH_PENDING
        logger.info("batch_fallback_started")
        item = request.model_copy(update={"session_id": None})
        try:
            batch = await self.backend.create_batch([item], session_id=request.session_id)
        except Exception as exc:
            if self._is_current(epoch):
                logger.warning("batch_create_failed", extra={"extra_fields": {"error": str(exc)}})
                self._settle(epoch, TaskResult(success=False, error="Failed to create batch task"))
            return
        if not self._is_current(epoch) or self.task is None:
            return

        task_id = batch.task_ids[0] if batch.task_ids else batch.batch_id
        self.task = self.task.model_copy(update={"id": task_id, "status": "running"})
        self.phase = TaskPhase.BATCH_RUNNING
        step = self._reconciler.add_step("analysis", BATCH_STEP, "running", f"Batch ID: {batch.batch_id}")
        with log_context(task_id=task_id, batch_id=batch.batch_id):
            logger.info("batch_created", extra={"extra_fields": {"task_count": len(batch.task_ids)}})
            self._poll_task = asyncio.create_task(self._poll_batch_status(epoch, batch.batch_id, task_id, step.id))

    async def _poll_batch_status(self, epoch: int, batch_id: str, task_id: str, step_id: str) -> None:
        await asyncio.sleep(self.settings.batch_initial_delay_s)
        polls = 0
        while self._is_current(epoch):
            try:
                status = await self.backend.get_batch_status(batch_id)
            except Exception as exc:
                if self._is_current(epoch):
                    logger.warning("batch_poll_failed", extra={"extra_fields": {"error": str(exc)}})
                    self._reconciler.update_step(step_id, status="error", details="Failed to poll batch status")
                    await self._finish(epoch, TaskResult(success=False, error="Failed to check batch status"))
                return
            if not self._is_current(epoch):
                return
            polls += 1
            self._reconciler.update_step(
                step_id,
                details=(
                    f"Batch ID: {batch_id} | Status: {status.counts.completed}/{status.counts.total} completed"
                    f" | Poll #{polls}"
                ),
            )
            if status.status in {"completed", "failed"}:
                await self._settle_batch(epoch, status, task_id, step_id, polls)
                return
            if self._poll_limit_reached(polls):
                self._reconciler.update_step(step_id, status="error", details="Timed out waiting for batch")
                await self._finish(epoch, TaskResult(success=False, error="Timed out waiting for task"))
                return
            logger.debug(
                "batch_poll_pending",
                extra={"extra_fields": {"completed": status.counts.completed, "total": status.counts.total}},
            )
            await asyncio.sleep(self.settings.batch_poll_interval_s)

    async def _settle_batch(self, epoch: int, status: BatchStatus, task_id: str, step_id: str, polls: int) -> None:
        done = status.completed_task() if status.status == "completed" else None
        if done is not None and done.result:
            try:
                result = parse_analysis_result(done.result, require_analysis=False)
            except ValidationError:
                logger.warning("batch_result_invalid", exc_info=True)
                result = None
            failure = None
            if result is not None and result.validations:
                failure = self._deliver(result, task_id)
            else:
                logger.warning("batch_result_empty")
            if failure is None:
                self._reconciler.update_step(step_id, status="completed", details=f"Batch completed successfully after {polls} polls")
                await self._finish(epoch, TaskResult(success=True, message="Batch processing completed"))
            else:
                self._reconciler.update_step(step_id, status="error", details=failure)
                await self._finish(epoch, TaskResult(success=False, error=failure))
            return

        failed = status.failed_task()
        message = failed.error_message if failed is not None and failed.error_message else "Batch task failed"
        self._reconciler.update_step(step_id, status="error", details=message)
        await self._finish(epoch, TaskResult(success=False, error=message))

    def _deliver(self, result: AnalysisResult, task_id: str) -> str | None:
        """Hand a parsed result to the reconciliation callback; returns an error message on failure."""
        prompt = self.task.prompt if self.task is not None else ""
        try:
            self.on_result(result, task_id, prompt)
        except Exception as exc:
            logger.exception("task_result_apply_failed")
            return f"Failed to apply analysis results: {exc}"
        return None

    def _poll_limit_reached(self, polls: int) -> bool:
        return self.settings.max_polls > 0 and polls >= self.settings.max_polls

    async def _finish(self, epoch: int, result: TaskResult) -> None:
        if self._settle(epoch, result):
            await self._close_channels()

    def _settle(self, epoch: int, result: TaskResult, *, force: bool = False) -> bool:
        """Move the task to its terminal state once; later calls are no-ops."""
        if self.task is None or self.task.is_terminal:
            return False
        if not force and not self._is_current(epoch):
            return False
        status = "completed" if result.success else "failed"
        self.task = self.task.model_copy(update={"status": status, "completed_at": utc_now(), "result": result})
        self.phase = TaskPhase.COMPLETED if result.success else TaskPhase.FAILED
        self.error = None if result.success else result.error
        logger.info(
            "task_settled",
            extra={"extra_fields": {"task_id": self.task.id, "status": status, "error": self.error}},
        )
        self.history_tick += 1
        if self.on_history_changed is not None:
            try:
                self.on_history_changed()
            except Exception:
                logger.exception("history_listener_failed")
        return True
