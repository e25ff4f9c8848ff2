from __future__ import annotations

from .schemas import CellValue, DataRow, Selection, copy_rows


class DatasetStore:
    """Holds the working dataset; every write to the rows goes through here."""

    def __init__(self, rows: list[DataRow] | None = None, columns: list[str] | None = None) -> None:
        self.rows: list[DataRow] = copy_rows(rows or [])
        self.columns: list[str] = list(columns or self._infer_columns(self.rows))
        self.selection = Selection()

    @staticmethod
    def _infer_columns(rows: list[DataRow]) -> list[str]:
        seen: dict[str, None] = {}
        for row in rows:
            for column in row:
                seen.setdefault(column, None)
        return list(seen)

    def load(self, rows: list[DataRow], columns: list[str] | None = None) -> None:
        self.rows = copy_rows(rows)
        self.columns = list(columns) if columns is not None else self._infer_columns(self.rows)
        self.selection = Selection()

    def update(self, rows: list[DataRow]) -> None:
        self.rows = copy_rows(rows)

    def update_cell(self, row_index: int, column_id: str, value: CellValue) -> None:
        if not 0 <= row_index < len(self.rows):
            raise IndexError(f"row {row_index} out of range")
        rows = list(self.rows)
        rows[row_index] = {**rows[row_index], column_id: value}
        self.rows = rows

    def select(self, rows: list[int], columns: list[str]) -> Selection:
        self.selection = Selection(rows=list(rows), columns=list(columns))
        return self.selection

    def slice(self, row_indexes: list[int]) -> list[DataRow]:
        wanted = set(row_indexes)
        return [dict(row) for index, row in enumerate(self.rows) if index in wanted]

    def delete_rows(self, row_indexes: list[int]) -> int:
        deleted = {index for index in row_indexes if 0 <= index < len(self.rows)}
        if not deleted:
            return 0
        self.rows = [row for index, row in enumerate(self.rows) if index not in deleted]
        self.selection = self.selection.without_rows(deleted)
        return len(deleted)

    def reset(self) -> None:
        self.rows = []
        self.columns = []
        self.selection = Selection()
