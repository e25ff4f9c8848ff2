from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Mapping

CONTEXT_FIELDS = ("correlation_id", "session_id", "task_id", "batch_id")

_log_fields: ContextVar[Mapping[str, str]] = ContextVar("cellcheck_log_fields", default={})


def set_context(**fields: str | None) -> Token[Mapping[str, str]]:
    """Layer correlation fields over the current ones.

    Unknown names and ``None`` values are ignored, so an inner scope that only
    knows the batch id keeps the task id set by an outer scope.
    """
    merged = dict(_log_fields.get())
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            merged[name] = str(value)
    return _log_fields.set(merged)


def reset_context(token: Token[Mapping[str, str]]) -> None:
    _log_fields.reset(token)


@contextmanager
def log_context(
    correlation_id: str | None = None,
    task_id: str | None = None,
    batch_id: str | None = None,
    session_id: str | None = None,
) -> Iterator[None]:
    token = set_context(correlation_id=correlation_id, task_id=task_id, batch_id=batch_id, session_id=session_id)
    try:
        yield
    finally:
        reset_context(token)


def get_log_context() -> dict[str, str]:
    current = _log_fields.get()
    return {name: current[name] for name in CONTEXT_FIELDS if name in current}
