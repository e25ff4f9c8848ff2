from .controller import TaskController
from .reconciler import StepReconciler, infer_step_kind
from .schemas import RawProgressEvent, Step, Task, TaskPhase, TaskResult

__all__ = [
    "RawProgressEvent",
    "Step",
    "StepReconciler",
    "Task",
    "TaskController",
    "TaskPhase",
    "TaskResult",
    "infer_step_kind",
]
