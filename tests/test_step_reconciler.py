from __future__ import annotations

from cellcheck.core.tasks.reconciler import StepReconciler, infer_step_kind
from cellcheck.core.tasks.schemas import RawProgressEvent


def _event(**fields) -> RawProgressEvent:
    return RawProgressEvent.model_validate(fields)


def test_infer_step_kind_from_tool_and_text() -> None:
    assert infer_step_kind(_event(type="tool_start", tool="web_search")) == "search"
    assert infer_step_kind(_event(type="tool_start", tool="bash")) == "code"
    assert infer_step_kind(_event(type="tool_start", tool="structured_output")) == "validation"
    assert infer_step_kind(_event(type="analysis_start")) == "analysis"
    assert infer_step_kind(_event(type="tool_start", tool="other", description="Running Analysis")) == "analysis"
    assert infer_step_kind(_event(type="tool_start", tool="other", description="Checking")) == "validation"


def test_tool_start_and_complete_resolve_through_registry() -> None:
    reconciler = StepReconciler()

    started = reconciler.apply(_event(type="tool_start", tool="web_search", description="Searching the web"))
    assert started is not None
    assert reconciler.in_flight_tools == {"web_search": started.id}

    completed = reconciler.apply(_event(type="tool_complete", tool="web_search", data={"results": 3}))

    assert completed is not None
    assert completed.id == started.id
    assert completed.status == "completed"
    assert completed.details == '{"results": 3}'
    assert reconciler.in_flight_tools == {}
    assert [step.status for step in reconciler.steps] == ["completed"]


def test_complete_without_registry_falls_back_to_latest_running_of_kind() -> None:
    reconciler = StepReconciler()
    older = reconciler.add_step("analysis", "first pass")
    newer = reconciler.add_step("analysis", "second pass")

    reconciler.apply(_event(type="analysis_complete"))

    statuses = {step.id: step.status for step in reconciler.steps}
    assert statuses[newer.id] == "completed"
    assert statuses[older.id] == "running"


def test_tool_error_marks_latest_running_and_keeps_details() -> None:
    reconciler = StepReconciler()
    reconciler.apply(_event(type="tool_start", tool="bash", description="Run script", details="python check.py"))

    failed = reconciler.apply(_event(type="tool_error", tool="bash"))

    assert failed is not None
    assert failed.status == "error"
    assert failed.details == "python check.py"
    assert reconciler.in_flight_tools == {}


def test_unmatched_events_are_dropped() -> None:
    reconciler = StepReconciler()

    assert reconciler.apply(_event(type="tool_complete", tool="web_search")) is None
    assert reconciler.apply(_event(type="tool_error", tool="bash")) is None
    assert reconciler.steps == []


def test_steps_are_returned_as_copies() -> None:
    reconciler = StepReconciler()
    step = reconciler.add_step("search", "Searching")

    reconciler.steps[0].status = "error"

    assert reconciler.steps[0].status == "running"
    assert reconciler.update_step(step.id, status="completed") is not None
    assert reconciler.update_step("missing", status="completed") is None
