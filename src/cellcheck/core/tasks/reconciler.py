from __future__ import annotations

import json
import logging
from uuid import uuid4

from .schemas import COMPLETE_EVENTS, ERROR_EVENTS, START_EVENTS, RawProgressEvent, Step, StepKind, StepStatus

logger = logging.getLogger("cellcheck.tasks.reconciler")

_TOOL_KINDS: dict[str, StepKind] = {
    "web_search": "search",
    "bash": "code",
    "structured_output": "validation",
}


def infer_step_kind(event: RawProgressEvent) -> StepKind:
    if event.tool in _TOOL_KINDS:
        return _TOOL_KINDS[event.tool]
    if "analysis" in event.kind or "analysis" in event.description.casefold():
        return "analysis"
    return "validation"


def _new_step_id() -> str:
    return uuid4().hex[:9]


class StepReconciler:
    """Turns raw progress events for one task into an ordered list of Steps.

    In-flight tool steps are tracked in a registry scoped to this instance;
    the controller builds a fresh reconciler per task so nothing leaks across
    tasks. Events that cannot be matched to a step are dropped.
    """

    def __init__(self) -> None:
        self._steps: list[Step] = []
        self._registry: dict[str, str] = {}

    @property
    def steps(self) -> list[Step]:
        return [step.model_copy() for step in self._steps]

    @property
    def in_flight_tools(self) -> dict[str, str]:
        return dict(self._registry)

    def add_step(self, kind: StepKind, description: str, status: StepStatus = "running", details: str | None = None) -> Step:
        step = Step(id=_new_step_id(), kind=kind, description=description, status=status, details=details)
        self._steps.append(step)
        return step

    def update_step(self, step_id: str, *, status: StepStatus | None = None, details: str | None = None) -> Step | None:
        step = self._find(step_id)
        if step is None:
            return None
        if status is not None:
            step.status = status
        if details is not None:
            step.details = details
        return step

    def apply(self, event: RawProgressEvent) -> Step | None:
        """Fold one event into the step list; returns the step it touched, if any."""
        if event.kind in START_EVENTS:
            return self._on_start(event)
        if event.kind in COMPLETE_EVENTS:
            return self._on_complete(event)
        if event.kind in ERROR_EVENTS:
            return self._on_error(event)
        return None

    def reset(self) -> None:
        self._steps = []
        self._registry = {}

    def _on_start(self, event: RawProgressEvent) -> Step:
        step = self.add_step(infer_step_kind(event), event.description, "running", event.details)
        if event.tool:
            self._registry[event.tool] = step.id
        return step

    def _on_complete(self, event: RawProgressEvent) -> Step | None:
        step: Step | None = None
        if event.tool and event.tool in self._registry:
            step = self._find(self._registry.pop(event.tool))
        if step is None:
            step = self._latest_running(infer_step_kind(event))
        if step is None:
            logger.debug("progress_event_unmatched", extra={"extra_fields": {"kind": event.kind, "tool": event.tool}})
            return None
        step.status = "completed"
        if event.data:
            step.details = json.dumps(event.data, ensure_ascii=False, default=str)
        return step

    def _on_error(self, event: RawProgressEvent) -> Step | None:
        step = self._latest_running(infer_step_kind(event))
        if step is None:
            logger.debug("progress_event_unmatched", extra={"extra_fields": {"kind": event.kind, "tool": event.tool}})
            return None
        step.status = "error"
        if event.details is not None:
            step.details = event.details
        if event.tool and self._registry.get(event.tool) == step.id:
            del self._registry[event.tool]
        return step

    def _latest_running(self, kind: StepKind) -> Step | None:
        for step in reversed(self._steps):
            if step.kind == kind and step.status == "running":
                return step
        return None

    def _find(self, step_id: str) -> Step | None:
        for step in self._steps:
            if step.id == step_id:
                return step
        return None
