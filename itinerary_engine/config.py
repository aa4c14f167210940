"""Runtime settings for the itinerary engine.

Values come from the process environment (a ``.env`` file is loaded first when
present) so operators can tune day windows and replanning cadence without code
changes.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class EngineSettings:
    day_start: str = "09:00"
    day_end: str = "18:00"
    buffer_minutes: int = 30
    replan_cooldown_seconds: float = 300.0
    scorer_url: Optional[str] = None
    scorer_timeout: float = 5.0
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "EngineSettings":
        raw_origins = os.getenv("ITINERARY_ENGINE_ALLOWED_ORIGINS") or "*"
        origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
        return cls(
            day_start=os.getenv("ITINERARY_ENGINE_DAY_START", "09:00"),
            day_end=os.getenv("ITINERARY_ENGINE_DAY_END", "18:00"),
            buffer_minutes=_env_int("ITINERARY_ENGINE_BUFFER_MINUTES", 30),
            replan_cooldown_seconds=_env_float("ITINERARY_ENGINE_REPLAN_COOLDOWN_SECONDS", 300.0),
            scorer_url=os.getenv("ITINERARY_ENGINE_SCORER_URL") or None,
            scorer_timeout=_env_float("ITINERARY_ENGINE_SCORER_TIMEOUT", 5.0),
            allowed_origins=origins or ["*"],
        )
