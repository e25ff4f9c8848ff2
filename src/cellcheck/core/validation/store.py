from __future__ import annotations

import logging
from typing import Callable

from cellcheck.core.data.schemas import CellValue, utc_now
from cellcheck.core.ledger.keys import cell_key
from cellcheck.core.ledger.ledger import CellHistoryLedger

from .grouping import group_validations, is_estimate
from .schemas import (
    AnalysisResult,
    GroupedValidation,
    RecordStatus,
    SummaryStats,
    ValidationMessage,
    ValidationRecord,
    ValidationSummary,
)

logger = logging.getLogger("cellcheck.validation")

CellWriter = Callable[[int, str, CellValue], None]

ANALYSIS_CONFIDENCE = 0.9

_STATUS_MAP: dict[str, RecordStatus] = {
    "valid": "confirmed",
    "warning": "auto_updated",
    "error": "conflict",
    "conflict": "conflict",
}
_DISMISSIBLE: frozenset[str] = frozenset({"auto_updated", "conflict"})


def map_status(status: str) -> RecordStatus:
    return _STATUS_MAP.get(status, "unchecked")


class ValidationStore:
    """Per-cell validation verdicts produced by analysis runs.

    Dataset writes go through ``write_cell`` so the caller keeps ownership of
    the rows. Applying a value never creates a version on its own.
    """

    def __init__(
        self,
        write_cell: CellWriter,
        ledger: CellHistoryLedger | None = None,
        source: str = "Claude AI",
    ) -> None:
        self.write_cell = write_cell
        self.ledger = ledger if ledger is not None else CellHistoryLedger()
        self.source = source
        self._records: dict[str, ValidationRecord] = {}
        self._summary: ValidationSummary | None = None
        self._applied: set[str] = set()

    @property
    def records(self) -> dict[str, ValidationRecord]:
        return dict(self._records)

    @property
    def summary(self) -> ValidationSummary | None:
        return self._summary

    def get(self, row_index: int, column_id: str) -> ValidationRecord | None:
        return self._records.get(cell_key(row_index, column_id))

    def reconcile(
        self,
        result: AnalysisResult,
        task_id: str | None = None,
        task_prompt: str | None = None,
    ) -> ValidationSummary | None:
        if result.validations is None:
            logger.info("validation_reconcile_skipped", extra={"extra_fields": {"reason": "no_validations"}})
            return None

        messages: list[ValidationMessage] = []
        for validation in result.validations:
            key = cell_key(validation.row_index, validation.column_id)
            messages.append(
                ValidationMessage(
                    row_index=validation.row_index,
                    column_id=validation.column_id,
                    status=validation.status,
                    message=validation.reason,
                    original_value=validation.original_value,
                    suggested_value=validation.suggested_value,
                    is_estimate=is_estimate(validation.reason),
                )
            )
            if task_id and task_prompt:
                self.ledger.record(
                    key,
                    task_id=task_id,
                    task_prompt=task_prompt,
                    original_value=validation.original_value,
                    new_value=validation.suggested_value,
                    reason=validation.reason,
                    status=validation.status,
                    source=self.source,
                )
            self._records[key] = ValidationRecord(
                cell_key=key,
                status=map_status(validation.status),
                original_value=validation.original_value,
                suggested_value=validation.suggested_value,
                confidence=ANALYSIS_CONFIDENCE,
                source=self.source,
                notes=validation.reason,
                applied=False,
                confirmed=validation.status == "valid",
            )
            self._applied.discard(key)

        self._summary = ValidationSummary(
            analysis=result.analysis or None,
            messages=messages,
            row_deletions=list(result.row_deletions),
        )
        logger.info(
            "validation_reconciled",
            extra={"extra_fields": {"validation_count": len(messages), "record_count": len(self._records)}},
        )
        return self._summary

    def apply_value(self, row_index: int, column_id: str, value: CellValue) -> bool:
        """Write ``value`` into the dataset. Returns False when the row no longer exists."""
        key = cell_key(row_index, column_id)
        try:
            self.write_cell(row_index, column_id, value)
        except IndexError:
            logger.warning("validation_apply_stale", extra={"extra_fields": {"cell_key": key}})
            return False
        self._applied.add(key)
        record = self._records.get(key)
        if record is not None:
            self._records[key] = record.model_copy(update={"status": "auto_updated", "applied": True, "timestamp": utc_now()})
        return True

    def confirm(self, row_index: int, column_id: str) -> bool:
        key = cell_key(row_index, column_id)
        record = self._records.get(key)
        if record is None:
            return False
        self._records[key] = record.model_copy(update={"status": "confirmed", "confirmed": True, "timestamp": utc_now()})
        return True

    def confirm_all(self) -> int:
        count = 0
        now = utc_now()
        for key, record in list(self._records.items()):
            if record.status == "auto_updated":
                self._records[key] = record.model_copy(update={"status": "confirmed", "confirmed": True, "timestamp": now})
                count += 1
        logger.info("validations_confirmed", extra={"extra_fields": {"count": count}})
        return count

    def dismiss_all(self) -> int:
        kept = {key: record for key, record in self._records.items() if record.status not in _DISMISSIBLE}
        count = len(self._records) - len(kept)
        self._records = kept
        logger.info("validations_dismissed", extra={"extra_fields": {"count": count}})
        return count

    def is_applied(self, row_index: int, column_id: str) -> bool:
        key = cell_key(row_index, column_id)
        if key in self._applied:
            return True
        record = self._records.get(key)
        return record is not None and record.applied

    def apply_message(self, message: ValidationMessage) -> bool:
        """Apply one summary suggestion. Estimates are never applied from the summary."""
        if message.suggested_value is None or message.is_estimate:
            return False
        if self.is_applied(message.row_index, message.column_id):
            return False
        return self.apply_value(message.row_index, message.column_id, message.suggested_value)

    def groups(self) -> list[GroupedValidation]:
        if self._summary is None:
            return []
        return group_validations(self._summary.messages)

    def apply_group(self, group: GroupedValidation) -> int:
        if not group.can_apply:
            return 0
        applied = 0
        for item in group.items:
            if self.is_applied(item.row_index, item.column_id):
                continue
            if self.apply_value(item.row_index, item.column_id, group.suggested_value):
                applied += 1
        logger.info(
            "validation_group_applied",
            extra={"extra_fields": {"applied": applied, "group_size": len(group.items)}},
        )
        return applied

    def summary_stats(self) -> SummaryStats:
        stats = SummaryStats()
        if self._summary is None:
            return stats
        for message in self._summary.messages:
            if message.status in {"valid", "warning", "error", "conflict"}:
                setattr(stats, message.status, getattr(stats, message.status) + 1)
        stats.deletions = len(self._summary.row_deletions)
        return stats

    def dismiss_summary(self) -> None:
        self._summary = None
        self._applied = set()

    def clear(self) -> None:
        self._records = {}
        self._summary = None
        self._applied = set()
        self.ledger.clear()
