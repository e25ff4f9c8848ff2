from __future__ import annotations

import logging
from typing import Callable, Literal

from cellcheck.core.data.schemas import DataRow

from .schemas import Snapshot

logger = logging.getLogger("cellcheck.history")

Direction = Literal["back", "forward"]
VersionListener = Callable[[Snapshot], None]


class VersionHistory:
    """Linear undo/redo stack of dataset snapshots.

    Creating a version while positioned before the end discards every later
    snapshot; there is no redo branching.
    """

    def __init__(self) -> None:
        self._snapshots: list[Snapshot] = []
        self._index = -1
        self._listeners: list[VersionListener] = []

    @property
    def index(self) -> int:
        return self._index

    @property
    def snapshots(self) -> list[Snapshot]:
        return list(self._snapshots)

    @property
    def current(self) -> Snapshot | None:
        if self._index < 0:
            return None
        return self._snapshots[self._index]

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self._index < len(self._snapshots) - 1

    def __len__(self) -> int:
        return len(self._snapshots)

    def subscribe(self, listener: VersionListener) -> None:
        self._listeners.append(listener)

    def initialize(self, rows: list[DataRow], description: str | None = None) -> Snapshot:
        snapshot = Snapshot.capture(rows, description)
        self._snapshots = [snapshot]
        self._index = 0
        return snapshot

    def initialize_from_snapshots(self, snapshots: list[Snapshot], fallback_rows: list[DataRow] | None = None) -> Snapshot:
        if not snapshots:
            return self.initialize(fallback_rows or [], "Initial data")
        self._snapshots = list(snapshots)
        self._index = len(self._snapshots) - 1
        return self._snapshots[self._index]

    def create_version(self, rows: list[DataRow], description: str) -> Snapshot:
        snapshot = Snapshot.capture(rows, description)
        # Anything after the current index is unreachable from here on.
        self._snapshots = self._snapshots[: self._index + 1]
        self._snapshots.append(snapshot)
        self._index = len(self._snapshots) - 1
        logger.info(
            "version_created",
            extra={"extra_fields": {"index": self._index, "description": description}},
        )
        for listener in self._listeners:
            listener(snapshot)
        return snapshot

    def navigate(self, direction: Direction) -> Snapshot | None:
        if direction == "back" and self._index > 0:
            self._index -= 1
        elif direction == "forward" and self._index < len(self._snapshots) - 1:
            self._index += 1
        return self.current

    def navigate_to(self, index: int) -> Snapshot | None:
        if not self._snapshots:
            return None
        self._index = min(max(0, index), len(self._snapshots) - 1)
        return self.current

    def clear(self) -> None:
        self._snapshots = []
        self._index = -1
