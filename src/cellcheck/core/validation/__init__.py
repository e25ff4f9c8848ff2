from .grouping import group_validations, is_estimate
from .schemas import (
    AnalysisResult,
    AnalysisValidation,
    GroupedValidation,
    RowDeletion,
    SummaryStats,
    ValidationMessage,
    ValidationRecord,
    ValidationSummary,
)
from .store import ValidationStore, map_status

__all__ = [
    "AnalysisResult",
    "AnalysisValidation",
    "GroupedValidation",
    "RowDeletion",
    "SummaryStats",
    "ValidationMessage",
    "ValidationRecord",
    "ValidationStore",
    "ValidationSummary",
    "group_validations",
    "is_estimate",
    "map_status",
]
