"""
Runtime configuration for formflow.

Values come from FORMFLOW_* environment variables with local-friendly
defaults. Components take plain constructor arguments; entry points
(app.py, main.py) build a Settings once and pass the values down.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Paths
    data_dir: str

    # Logging
    log_level: str

    # Editor autosave
    autosave_debounce_seconds: float

    # Filler drafts
    draft_debounce_seconds: float
    draft_ttl_hours: float

    # Traversal safety valve
    walk_max_steps: int

    # Submission
    submit_max_attempts: int
    submit_base_delay_seconds: float
    submit_max_delay_seconds: float
    min_phone_digits: int

    @property
    def draft_ttl_seconds(self) -> float:
        return self.draft_ttl_hours * 3600

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_str("FORMFLOW_DATA_DIR", "outputs") or "outputs"
        Path(data_dir).mkdir(parents=True, exist_ok=True)

        return Settings(
            data_dir=data_dir,
            log_level=_env_str("FORMFLOW_LOG_LEVEL", "INFO") or "INFO",
            autosave_debounce_seconds=_env_float("FORMFLOW_AUTOSAVE_DEBOUNCE_SECONDS", 1.5),
            draft_debounce_seconds=_env_float("FORMFLOW_DRAFT_DEBOUNCE_SECONDS", 0.5),
            draft_ttl_hours=_env_float("FORMFLOW_DRAFT_TTL_HOURS", 24.0),
            walk_max_steps=_env_int("FORMFLOW_WALK_MAX_STEPS", 50),
            submit_max_attempts=_env_int("FORMFLOW_SUBMIT_MAX_ATTEMPTS", 3),
            submit_base_delay_seconds=_env_float("FORMFLOW_SUBMIT_BASE_DELAY_SECONDS", 0.5),
            submit_max_delay_seconds=_env_float("FORMFLOW_SUBMIT_MAX_DELAY_SECONDS", 4.0),
            min_phone_digits=_env_int("FORMFLOW_MIN_PHONE_DIGITS", 7),
        )
