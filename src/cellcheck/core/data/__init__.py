from .schemas import CellValue, DataRow, Selection
from .store import DatasetStore

__all__ = ["CellValue", "DataRow", "DatasetStore", "Selection"]
