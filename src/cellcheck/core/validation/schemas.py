from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cellcheck.core.data.schemas import CellValue, utc_now
from cellcheck.core.ledger import keys

RecordStatus = Literal["unchecked", "auto_updated", "confirmed", "conflict", "pending"]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AnalysisValidation(_WireModel):
    row_index: int
    column_id: str
    status: str
    original_value: CellValue = None
    suggested_value: CellValue = None
    reason: str = ""


class RowDeletion(_WireModel):
    row_index: int
    reason: str = ""
    confidence: Literal["high", "medium", "low"] = "medium"


class AnalysisResult(_WireModel):
    analysis: str = ""
    method: str | None = None
    validations: list[AnalysisValidation] | None = None
    row_deletions: list[RowDeletion] = Field(default_factory=list)


class ValidationRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cell_key: str
    status: RecordStatus
    original_value: CellValue = None
    suggested_value: CellValue = Field(default=None, alias="validatedValue")
    confidence: float | None = None
    source: str | None = None
    notes: str | None = None
    applied: bool = False
    confirmed: bool = False
    timestamp: datetime = Field(default_factory=utc_now)


class ValidationMessage(BaseModel):
    row_index: int
    column_id: str
    status: str
    message: str
    original_value: CellValue = None
    suggested_value: CellValue = None
    is_estimate: bool = False

    @property
    def cell_key(self) -> str:
        return keys.cell_key(self.row_index, self.column_id)


class ValidationSummary(BaseModel):
    analysis: str | None = None
    messages: list[ValidationMessage] = Field(default_factory=list)
    row_deletions: list[RowDeletion] = Field(default_factory=list)


class SummaryStats(BaseModel):
    valid: int = 0
    warning: int = 0
    error: int = 0
    conflict: int = 0
    deletions: int = 0


class GroupedValidation(BaseModel):
    key: str
    original_value: CellValue = None
    suggested_value: CellValue = None
    status: str
    message: str
    is_estimate: bool = False
    items: list[ValidationMessage] = Field(default_factory=list)

    @property
    def is_batch(self) -> bool:
        return len(self.items) > 1

    @property
    def can_apply(self) -> bool:
        return self.suggested_value is not None and not self.is_estimate

    @property
    def columns(self) -> list[str]:
        return list(dict.fromkeys(item.column_id for item in self.items))
