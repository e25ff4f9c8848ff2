from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cellcheck.core.data.schemas import CellValue, utc_now


class CellHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    task_id: str
    task_prompt: str
    original_value: CellValue = None
    new_value: CellValue = None
    reason: str = ""
    status: str
    source: str
    timestamp: datetime = Field(default_factory=utc_now)
