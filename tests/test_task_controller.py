from __future__ import annotations

import asyncio
from dataclasses import replace

from cellcheck.core.backend.schemas import BatchCounts, BatchStatus, BatchTask, TaskStatusResponse
from cellcheck.core.data.schemas import Selection
from cellcheck.core.http.errors import CellcheckHTTPNetworkError, CellcheckHTTPStatusError, RateLimitedError
from cellcheck.core.tasks import TaskController, TaskPhase
from cellcheck.core.tasks.controller import BATCH_STEP, STARTING_STEP

FIX_EMAILS_RESULT = {
    "analysis": "Checked 2 emails",
    "validations": [
        {
            "rowIndex": 1,
            "columnId": "email",
            "status": "error",
            "originalValue": "bad",
            "suggestedValue": "bad@x.com",
            "reason": "missing domain",
        }
    ],
}
ROWS = [{"email": "ada@x.com"}, {"email": "bad"}]
SELECTION = Selection(rows=[0, 1], columns=["email"])


def _controller(backend, settings, delivered: list) -> TaskController:
    def on_result(result, task_id, prompt) -> None:
        delivered.append((result, task_id, prompt))

    return TaskController(backend, on_result, settings=settings)


def _completed(task_id: str, result=FIX_EMAILS_RESULT) -> TaskStatusResponse:
    return TaskStatusResponse(task_id=task_id, status="completed", result=result)


def _run(controller: TaskController, prompt: str = "fix emails", session_id: str | None = None) -> bool:
    async def scenario() -> bool:
        started = await controller.submit(prompt, SELECTION, ROWS, session_id)
        await controller.wait()
        return started

    return asyncio.run(scenario())


def test_stream_feeds_steps_and_poll_completes_task(backend, fast_settings) -> None:
    delivered: list = []
    controller = _controller(backend, fast_settings, delivered)
    backend.wait_for_stream = True
    backend.stream_messages["task-1"] = [
        {"type": "connected", "taskId": "task-1"},
        {"type": "task_event", "event": {"type": "tool_start", "tool": "web_search", "description": "Searching"}},
        {"type": "task_event", "event": {"type": "tool_complete", "tool": "web_search", "data": {"hits": 2}}},
        {"type": "task_event", "event": {"type": "not_a_real_event"}},
    ]
    backend.statuses["task-1"] = [TaskStatusResponse(task_id="task-1", status="running"), _completed("task-1")]

    assert _run(controller, session_id="session-1") is True

    task = controller.task
    assert task is not None
    assert task.id == "task-1"
    assert task.status == "completed"
    assert task.completed_at is not None
    assert task.result is not None and task.result.message == "Analysis completed"
    assert controller.phase is TaskPhase.COMPLETED
    assert controller.error is None
    assert controller.history_tick == 1

    steps = controller.steps
    assert [(step.kind, step.status) for step in steps] == [("analysis", "completed"), ("search", "completed")]
    assert steps[0].description == STARTING_STEP
    assert steps[0].details == "Task created: task-1"
    assert steps[1].details == '{"hits": 2}'

    assert len(delivered) == 1
    result, task_id, prompt = delivered[0]
    assert (task_id, prompt) == ("task-1", "fix emails")
    assert result.validations[0].suggested_value == "bad@x.com"

    request = backend.requests[0]
    assert request.selected_rows == [0, 1]
    assert request.selected_columns == ["email"]
    assert request.session_id == "session-1"
    assert backend.streams[0].closed


def test_stream_error_does_not_settle_task(backend, fast_settings) -> None:
    delivered: list = []
    controller = _controller(backend, fast_settings, delivered)
    backend.wait_for_stream = True
    backend.stream_messages["task-1"] = [{"type": "error", "message": "stream dropped"}]
    backend.statuses["task-1"] = [_completed("task-1", result="All good")]

    _run(controller)

    assert controller.task.status == "completed"
    assert controller.task.result.message == "All good"
    assert delivered == []


def test_terminal_state_is_idempotent(backend, fast_settings) -> None:
    delivered: list = []
    history_calls: list[int] = []
    controller = _controller(backend, fast_settings, delivered)
    controller.on_history_changed = lambda: history_calls.append(1)
    backend.statuses["task-1"] = [_completed("task-1")]

    async def scenario() -> None:
        await controller.submit("fix emails", SELECTION, ROWS)
        await controller.wait()
        settled_at = controller.task.completed_at
        polls = len(backend.poll_calls)
        for _ in range(5):
            await asyncio.sleep(0)
        assert controller.task.completed_at == settled_at
        assert len(backend.poll_calls) == polls

    asyncio.run(scenario())

    assert controller.task.status == "completed"
    assert len(delivered) == 1
    assert controller.history_tick == 1
    assert history_calls == [1]


def test_submit_while_running_is_ignored_and_cancel_fails_task(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])

    async def scenario() -> bool:
        await controller.submit("first", SELECTION, ROWS)
        second = await controller.submit("second", SELECTION, ROWS)
        await controller.cancel()
        return second

    assert asyncio.run(scenario()) is False
    assert len(backend.requests) == 1
    assert controller.task.prompt == "first"
    assert controller.task.status == "failed"
    assert controller.error == "Task cancelled"
    assert controller.phase is TaskPhase.FAILED
    assert backend.streams[0].closed


def test_replacing_a_task_isolates_the_old_one(backend, fast_settings) -> None:
    delivered: list = []
    controller = _controller(backend, fast_settings, delivered)
    backend.stream_messages["task-1"] = [
        {"type": "task_event", "event": {"type": "tool_start", "tool": "bash", "description": "Old task script"}},
    ]
    backend.statuses["task-2"] = [_completed("task-2")]

    async def scenario() -> tuple[bool, list, list, int, int]:
        gate = asyncio.Event()
        backend.stream_gates["task-1"] = gate
        await controller.submit("first", SELECTION, ROWS)
        for _ in range(3):
            await asyncio.sleep(0)
        replaced = await controller.submit("second", SELECTION, ROWS, replace=True)
        await controller.wait()
        steps = [step.model_dump() for step in controller.steps]
        results = list(delivered)

        old_stream = backend.streams[0]
        gate.set()
        for _ in range(50):
            if old_stream.yielded:
                break
            await asyncio.sleep(0)
        assert old_stream.yielded == 1
        for _ in range(5):
            await asyncio.sleep(0)

        assert [step.model_dump() for step in controller.steps] == steps
        assert delivered == results
        old_polls = backend.poll_calls.count("task-1")
        for _ in range(5):
            await asyncio.sleep(0)
        return replaced, steps, results, old_polls, backend.poll_calls.count("task-1")

    replaced, steps, results, old_polls, old_polls_later = asyncio.run(scenario())

    assert replaced is True
    assert old_polls == old_polls_later
    assert controller.task.id == "task-2"
    assert controller.task.prompt == "second"
    assert controller.task.status == "completed"
    assert [task_id for _, task_id, _ in results] == ["task-2"]
    assert [step["kind"] for step in steps] == ["analysis"]
    assert all(step.kind != "code" for step in controller.steps)
    assert backend.streams[0].closed
    assert controller.history_tick == 1


def test_rate_limit_falls_back_to_batch(backend, fast_settings) -> None:
    delivered: list = []
    controller = _controller(backend, fast_settings, delivered)
    backend.create_error = RateLimitedError("HTTP 429: Too many requests")
    backend.batch_statuses = [
        BatchStatus(batch_id="batch-1", status="processing", counts=BatchCounts(total=1, processing=1)),
        BatchStatus(
            batch_id="batch-1",
            status="completed",
            counts=BatchCounts(total=1, completed=1),
            tasks=[BatchTask(id="batch-task-1", status="completed", result=FIX_EMAILS_RESULT)],
        ),
    ]

    assert _run(controller, session_id="session-1") is True

    assert controller.task.id == "batch-task-1"
    assert controller.task.status == "completed"
    assert controller.task.result.message == "Batch processing completed"
    assert controller.phase is TaskPhase.COMPLETED
    assert [(task_id, prompt) for _, task_id, prompt in delivered] == [("batch-task-1", "fix emails")]

    items, session_id = backend.batches[0]
    assert session_id == "session-1"
    assert len(items) == 1
    assert items[0].prompt == "fix emails"
    assert items[0].data == ROWS
    assert items[0].session_id is None

    batch_step = controller.steps[-1]
    assert batch_step.description == BATCH_STEP
    assert batch_step.status == "completed"
    assert batch_step.details == "Batch completed successfully after 2 polls"
    assert backend.streams == []


def test_batch_progress_details_track_counts(backend, fast_settings) -> None:
    controller = _controller(backend, replace(fast_settings, max_polls=1), [])
    backend.create_error = RuntimeError("upstream returned 429")
    backend.batch_statuses = [
        BatchStatus(batch_id="batch-1", status="processing", counts=BatchCounts(total=4, completed=1, processing=3)),
    ]

    _run(controller)

    batch_step = controller.steps[-1]
    assert batch_step.status == "error"
    assert controller.error == "Timed out waiting for task"
    assert controller.task.status == "failed"


def test_batch_failed_subtask_surfaces_error_message(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.create_error = RateLimitedError("HTTP 429: slow down")
    backend.batch_statuses = [
        BatchStatus(
            batch_id="batch-1",
            status="completed",
            counts=BatchCounts(total=1, failed=1),
            tasks=[BatchTask(id="batch-task-1", status="failed", error_message="model overloaded")],
        )
    ]

    _run(controller)

    assert controller.task.status == "failed"
    assert controller.error == "model overloaded"
    assert controller.steps[-1].status == "error"
    assert controller.steps[-1].details == "model overloaded"


def test_batch_failed_status_uses_default_message(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.create_error = RateLimitedError("HTTP 429: slow down")
    backend.batch_statuses = [BatchStatus(batch_id="batch-1", status="failed")]

    _run(controller)

    assert controller.error == "Batch task failed"


def test_batch_poll_error_fails_task(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.create_error = RateLimitedError("HTTP 429: slow down")
    backend.batch_poll_error = CellcheckHTTPNetworkError("connection reset")

    _run(controller)

    assert controller.error == "Failed to check batch status"
    assert controller.steps[-1].status == "error"


def test_batch_creation_error_fails_task(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.create_error = RateLimitedError("HTTP 429: slow down")
    backend.create_batch_error = CellcheckHTTPStatusError("HTTP 500: boom", status_code=500)

    _run(controller)

    assert controller.task.status == "failed"
    assert controller.error == "Failed to create batch task"


def test_creation_failure_marks_initial_step_error(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.create_error = CellcheckHTTPNetworkError("connection refused")

    assert _run(controller) is True

    assert controller.task.id == "pending"
    assert controller.task.status == "failed"
    assert controller.error == "connection refused"
    assert controller.steps[0].status == "error"
    assert controller.steps[0].details == "connection refused"
    assert backend.batches == []


def test_poll_transport_error_fails_with_raw_message(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.poll_error = CellcheckHTTPStatusError("HTTP 500: backend exploded", status_code=500)

    _run(controller)

    assert controller.task.status == "failed"
    assert controller.error == "HTTP 500: backend exploded"
    assert backend.streams[0].closed


def test_server_reported_failure_defaults_message(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.statuses["task-1"] = [TaskStatusResponse(task_id="task-1", status="failed")]

    _run(controller)

    assert controller.error == "Task failed"
    assert controller.history_tick == 1


def test_poll_cap_times_out(backend, fast_settings) -> None:
    controller = _controller(backend, replace(fast_settings, max_polls=3), [])

    _run(controller)

    assert controller.error == "Timed out waiting for task"
    assert backend.poll_calls == ["task-1"] * 3


def test_result_callback_failure_fails_task(backend, fast_settings) -> None:
    def on_result(result, task_id, prompt) -> None:
        raise ValueError("row out of range")

    controller = TaskController(backend, on_result, settings=fast_settings)
    backend.statuses["task-1"] = [_completed("task-1")]

    _run(controller)

    assert controller.task.status == "failed"
    assert controller.error == "Failed to apply analysis results: row out of range"


def test_clear_resets_state(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.statuses["task-1"] = [_completed("task-1")]

    async def scenario() -> None:
        await controller.submit("fix emails", SELECTION, ROWS)
        await controller.wait()
        await controller.clear()

    asyncio.run(scenario())

    assert controller.task is None
    assert controller.steps == []
    assert controller.error is None
    assert controller.phase is TaskPhase.IDLE


def test_batch_mode_is_forwarded_with_the_request(backend, fast_settings) -> None:
    controller = _controller(backend, fast_settings, [])
    backend.statuses["task-1"] = [_completed("task-1")]
    backend.statuses["task-2"] = [_completed("task-2")]

    async def scenario() -> None:
        await controller.submit("fix emails", SELECTION, ROWS, "session-1", batch_mode=True)
        await controller.wait()

    asyncio.run(scenario())

    assert backend.requests[0].batch_mode is True
    assert backend.requests[0].to_wire()["batchMode"] is True

    _run(controller, prompt="again")
    assert backend.requests[1].batch_mode is None
    assert "batchMode" not in backend.requests[1].to_wire()
