from .base import AnalysisBackend, ProgressStream
from .client import HTTPAnalysisBackend, SSEProgressStream
from .schemas import (
    BatchCreated,
    BatchStatus,
    SessionData,
    SessionInfo,
    SessionTask,
    TaskCreated,
    TaskRequest,
    TaskStatusResponse,
    parse_analysis_result,
)

__all__ = [
    "AnalysisBackend",
    "BatchCreated",
    "BatchStatus",
    "HTTPAnalysisBackend",
    "ProgressStream",
    "SSEProgressStream",
    "SessionData",
    "SessionInfo",
    "SessionTask",
    "TaskCreated",
    "TaskRequest",
    "TaskStatusResponse",
    "parse_analysis_result",
]
