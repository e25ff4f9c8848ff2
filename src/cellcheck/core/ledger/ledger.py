from __future__ import annotations

import json
import logging
from pathlib import Path

from cellcheck.core.data.schemas import CellValue

from .schemas import CellHistoryEntry

logger = logging.getLogger("cellcheck.ledger")


class CellHistoryLedger:
    """Append-only provenance log of suggested changes, one list per cell key.

    Entries are kept in memory; when ``state_dir`` is given they are also
    appended to ``cell_history.jsonl`` and reloaded on construction.
    """

    def __init__(self, state_dir: str | Path | None = None) -> None:
        self._entries: dict[str, list[CellHistoryEntry]] = {}
        self._count = 0
        self.path: Path | None = None
        if state_dir is not None:
            directory = Path(state_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self.path = directory / "cell_history.jsonl"
            self._load()

    def append(self, cell_key: str, entry: CellHistoryEntry) -> CellHistoryEntry:
        self._entries.setdefault(cell_key, []).append(entry)
        self._count += 1
        if self.path is not None:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps({"cell_key": cell_key, "entry": entry.model_dump(mode="json")}, ensure_ascii=False))
                handle.write("\n")
        return entry

    def record(
        self,
        cell_key: str,
        *,
        task_id: str,
        task_prompt: str,
        original_value: CellValue,
        new_value: CellValue,
        reason: str,
        status: str,
        source: str,
    ) -> CellHistoryEntry:
        entry = CellHistoryEntry(
            id=f"{task_id}-{self._count + 1}",
            task_id=task_id,
            task_prompt=task_prompt,
            original_value=original_value,
            new_value=new_value,
            reason=reason,
            status=status,
            source=source,
        )
        return self.append(cell_key, entry)

    def get(self, cell_key: str) -> list[CellHistoryEntry]:
        return list(self._entries.get(cell_key, []))

    def keys(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return self._count

    def clear(self) -> None:
        self._entries = {}
        self._count = 0
        if self.path is not None and self.path.exists():
            self.path.unlink()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                raw = line.strip()
                if not raw:
                    continue
                try:
                    payload = json.loads(raw)
                    entry = CellHistoryEntry.model_validate(payload["entry"])
                    key = str(payload["cell_key"])
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.warning("cell_history_line_skipped")
                    continue
                self._entries.setdefault(key, []).append(entry)
                self._count += 1
