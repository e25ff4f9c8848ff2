from .keys import cell_key, parse_cell_key
from .ledger import CellHistoryLedger
from .schemas import CellHistoryEntry

__all__ = [
    "CellHistoryEntry",
    "CellHistoryLedger",
    "cell_key",
    "parse_cell_key",
]
