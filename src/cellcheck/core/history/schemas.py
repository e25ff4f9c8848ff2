from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from cellcheck.core.data.schemas import DataRow, copy_rows, utc_now


class Snapshot(BaseModel):
    rows: list[DataRow] = Field(default_factory=list)
    description: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def capture(cls, rows: list[DataRow], description: str | None = None) -> "Snapshot":
        return cls(rows=copy_rows(rows), description=description)
