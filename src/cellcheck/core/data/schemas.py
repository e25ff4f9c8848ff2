from __future__ import annotations

from datetime import datetime, timezone
from typing import Union

from pydantic import BaseModel, Field

CellValue = Union[str, int, float, bool, None]
DataRow = dict[str, CellValue]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def copy_rows(rows: list[DataRow]) -> list[DataRow]:
    return [dict(row) for row in rows]


class Selection(BaseModel):
    rows: list[int] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)

    def without_rows(self, deleted: set[int]) -> "Selection":
        """Drop deleted rows and shift the remaining indexes down."""
        remaining = sorted(deleted)
        shifted: list[int] = []
        for index in self.rows:
            if index in deleted:
                continue
            shifted.append(index - sum(1 for gone in remaining if gone < index))
        return Selection(rows=shifted, columns=list(self.columns))
