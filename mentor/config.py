from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

PACKAGE_DIR = Path(__file__).parent


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _resolve_db_path() -> Path:
    override = _env("MENTOR_DB_PATH")
    if override:
        return Path(override).expanduser().resolve()
    return PACKAGE_DIR / "data" / "mentor.db"


class Settings(BaseModel):
    database_path: Path = Field(default_factory=_resolve_db_path)

    push_endpoint: str = Field(default_factory=lambda: _env("MENTOR_PUSH_ENDPOINT"))
    push_api_key: str = Field(default_factory=lambda: _env("MENTOR_PUSH_API_KEY"))
    push_timeout_seconds: float = Field(
        default_factory=lambda: float(_env("MENTOR_PUSH_TIMEOUT", "10"))
    )

    # The due-task window width and the scheduler cadence are the same number.
    due_task_interval_minutes: int = Field(
        default_factory=lambda: int(_env("MENTOR_DUE_TASK_INTERVAL_MINUTES", "15")), ge=1
    )
    warming_target_day: int = Field(
        default_factory=lambda: int(_env("MENTOR_WARMING_TARGET_DAY", "10")), ge=0
    )
    timezone: str = Field(default_factory=lambda: _env("MENTOR_TIMEZONE", "America/Sao_Paulo"))

    signing_bonus_xp: int = Field(
        default_factory=lambda: int(_env("MENTOR_SIGNING_BONUS_XP", "100")), ge=0
    )

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    def ensure_directories(self) -> None:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
