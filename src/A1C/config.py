"""
Run configuration.

Environment flags
----------------------------------------
A1C_DATE_FORMAT=%d/%m/%Y : strftime-style format of the observation dates
                           (default: let pandas infer it).
A1C_DAYFIRST=1           : Parse ambiguous dates day-first when no format is given.
A1C_LOG_LEVEL=DEBUG      : Logging level used by the CLI (default: INFO).

CLI options override the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y"}


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name, "").strip()
    return raw or None


@dataclass(frozen=True)
class RunConfig:
    date_format: Optional[str] = None
    dayfirst: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RunConfig":
        return cls(
            date_format=_env_str("A1C_DATE_FORMAT"),
            dayfirst=_env_flag("A1C_DAYFIRST"),
            log_level=(_env_str("A1C_LOG_LEVEL") or "INFO").upper(),
        )

    def with_overrides(self, **overrides) -> "RunConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
