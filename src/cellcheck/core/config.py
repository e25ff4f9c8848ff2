from __future__ import annotations

import os
from dataclasses import dataclass

_DEFAULT_API_URL = "http://localhost:8787"
_DEFAULT_SOURCE = "Claude AI"


def get_float_env(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def get_int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class Settings:
    api_url: str = _DEFAULT_API_URL
    poll_initial_delay_s: float = 1.0
    poll_interval_s: float = 1.0
    batch_initial_delay_s: float = 2.0
    batch_poll_interval_s: float = 5.0
    max_polls: int = 0
    analysis_source: str = _DEFAULT_SOURCE


def load_settings() -> Settings:
    api_url = (os.getenv("CELLCHECK_API_URL") or _DEFAULT_API_URL).strip().rstrip("/")
    source = (os.getenv("CELLCHECK_ANALYSIS_SOURCE") or _DEFAULT_SOURCE).strip() or _DEFAULT_SOURCE
    return Settings(
        api_url=api_url,
        poll_initial_delay_s=get_float_env("CELLCHECK_POLL_INITIAL_DELAY_S", 1.0),
        poll_interval_s=get_float_env("CELLCHECK_POLL_INTERVAL_S", 1.0),
        batch_initial_delay_s=get_float_env("CELLCHECK_BATCH_INITIAL_DELAY_S", 2.0),
        batch_poll_interval_s=get_float_env("CELLCHECK_BATCH_POLL_INTERVAL_S", 5.0),
        # 0 keeps polling until the server reports a terminal status.
        max_polls=get_int_env("CELLCHECK_MAX_POLLS", 0),
        analysis_source=source,
    )
