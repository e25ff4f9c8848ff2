from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from cellcheck.core.backend.base import AnalysisBackend
from cellcheck.core.config import Settings, load_settings
from cellcheck.core.data.schemas import CellValue, DataRow
from cellcheck.core.data.store import DatasetStore
from cellcheck.core.history.schemas import Snapshot
from cellcheck.core.history.store import VersionHistory
from cellcheck.core.ledger.ledger import CellHistoryLedger
from cellcheck.core.logging.context import log_context
from cellcheck.core.tasks.controller import TaskController
from cellcheck.core.validation.schemas import AnalysisResult, GroupedValidation, ValidationMessage
from cellcheck.core.validation.store import ValidationStore

logger = logging.getLogger("cellcheck.workbench")


class Workbench:
    """One working session: dataset, versions, validations and the task runner.

    Every dataset write goes through ``dataset``; every durable edit becomes a
    version, and versions are mirrored to the backend session when one is set.
    """

    def __init__(
        self,
        backend: AnalysisBackend,
        *,
        settings: Settings | None = None,
        ledger: CellHistoryLedger | None = None,
        state_dir: str | Path | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.backend = backend
        self.session_id: str | None = None
        self.dataset = DatasetStore()
        self.history = VersionHistory()
        self.ledger = ledger if ledger is not None else CellHistoryLedger(state_dir)
        self.validations = ValidationStore(self.dataset.update_cell, self.ledger, source=self.settings.analysis_source)
        self.controller = TaskController(backend, self._apply_result, settings=self.settings)
        self._mirrors: set[asyncio.Task[None]] = set()
        self.history.subscribe(self._mirror_snapshot)

    def load(
        self,
        rows: list[DataRow],
        columns: list[str] | None = None,
        *,
        session_id: str | None = None,
        description: str = "Initial data",
    ) -> Snapshot:
        self.dataset.load(rows, columns)
        self.session_id = session_id
        self.validations.dismiss_summary()
        return self.history.initialize(self.dataset.rows, description)

    async def load_session(self, session_id: str) -> Snapshot:
        session = await self.backend.get_session(session_id)
        self.dataset.load(session.data, session.column_names or None)
        self.session_id = session_id
        self.validations.dismiss_summary()
        snapshots = [Snapshot.capture(stored.data, stored.description) for stored in session.snapshots]
        current = self.history.initialize_from_snapshots(snapshots, fallback_rows=self.dataset.rows)
        self.dataset.update(current.rows)
        logger.info("session_loaded", extra={"extra_fields": {"session_id": session_id, "versions": len(self.history)}})
        return current

    def select(self, rows: list[int], columns: list[str]) -> None:
        self.dataset.select(rows, columns)

    async def run_task(self, prompt: str, *, replace: bool = False, batch_mode: bool | None = None) -> bool:
        selection = self.dataset.selection
        data_slice = self.dataset.slice(selection.rows)
        return await self.controller.submit(
            prompt, selection, data_slice, self.session_id, replace=replace, batch_mode=batch_mode
        )

    def _apply_result(self, result: AnalysisResult, task_id: str, prompt: str) -> None:
        self.validations.reconcile(result, task_id, prompt)

    def apply_value(self, row_index: int, column_id: str, value: CellValue) -> bool:
        return self.validations.apply_value(row_index, column_id, value)

    def apply_suggestion(self, message: ValidationMessage) -> bool:
        return self.validations.apply_message(message)

    def apply_group(self, group: GroupedValidation) -> int:
        return self.validations.apply_group(group)

    def confirm(self, row_index: int, column_id: str) -> bool:
        return self.validations.confirm(row_index, column_id)

    def confirm_all(self) -> int:
        count = self.validations.confirm_all()
        if count > 0:
            self.create_version(f"Confirmed {count} validation(s)")
        return count

    def dismiss_all(self) -> int:
        return self.validations.dismiss_all()

    def create_version(self, description: str) -> Snapshot:
        return self.history.create_version(self.dataset.rows, description)

    def undo(self) -> Snapshot | None:
        return self._show(self.history.navigate("back"))

    def redo(self) -> Snapshot | None:
        return self._show(self.history.navigate("forward"))

    def go_to_version(self, index: int) -> Snapshot | None:
        return self._show(self.history.navigate_to(index))

    def _show(self, snapshot: Snapshot | None) -> Snapshot | None:
        if snapshot is not None:
            self.dataset.update(snapshot.rows)
        return snapshot

    def delete_rows(self, row_indexes: list[int]) -> int:
        removed = self.dataset.delete_rows(row_indexes)
        if removed:
            # Summary row indexes no longer line up with the dataset.
            self.validations.dismiss_summary()
            self.create_version(f"Deleted {removed} row(s)")
        return removed

    async def reset(self) -> None:
        await self.controller.clear()
        self.dataset.reset()
        self.history.clear()
        self.validations.clear()
        self.session_id = None

    def _mirror_snapshot(self, snapshot: Snapshot) -> None:
        if not self.session_id:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("snapshot_mirror_skipped", extra={"extra_fields": {"reason": "no_event_loop"}})
            return
        task = loop.create_task(self._save_snapshot(self.session_id, snapshot))
        self._mirrors.add(task)
        task.add_done_callback(self._mirrors.discard)

    async def _save_snapshot(self, session_id: str, snapshot: Snapshot) -> None:
        with log_context(session_id=session_id):
            try:
                await self.backend.save_snapshot(session_id, snapshot.rows, snapshot.description or "")
            except Exception as exc:
                logger.warning("snapshot_mirror_failed", extra={"extra_fields": {"error": str(exc)}})
                return
            logger.info("snapshot_mirrored", extra={"extra_fields": {"description": snapshot.description}})

    async def flush(self) -> None:
        """Wait for pending snapshot mirrors."""
        if self._mirrors:
            await asyncio.gather(*list(self._mirrors))

    async def aclose(self) -> None:
        await self.controller.aclose()
        await self.flush()
