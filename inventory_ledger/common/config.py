from __future__ import annotations

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration for the ledger engine and its jobs.

    Notes:
    - REPORTING_TIMEZONE decides which calendar day a timestamp belongs to
      (migration entry dates, dashboard grouping).
    - Locally, Firestore access still goes through the emulator guard in
      `inventory_ledger.persistence.firebase_client`.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service identity
    SERVICE_NAME: str = "inventory-ledger"
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    REPORTING_TIMEZONE: str = "America/Sao_Paulo"
    DEFAULT_CATEGORY: str = "Operacional"

    # Backfill job
    MIGRATION_BATCH_SIZE: int = 50
    MIGRATION_DEADLINE_S: Optional[float] = None

    FIREBASE_PROJECT_ID: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FIREBASE_PROJECT_ID", "FIRESTORE_PROJECT_ID", "GOOGLE_CLOUD_PROJECT"),
    )

    @field_validator("REPORTING_TIMEZONE")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        s = (v or "").strip()
        try:
            ZoneInfo(s)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown REPORTING_TIMEZONE: {v!r}") from e
        return s

    @field_validator("MIGRATION_BATCH_SIZE")
    @classmethod
    def _positive_batch(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MIGRATION_BATCH_SIZE must be >= 1")
        return v

    @field_validator("MIGRATION_DEADLINE_S")
    @classmethod
    def _positive_deadline(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("MIGRATION_DEADLINE_S must be > 0 when set")
        return v

    @property
    def reporting_tz(self) -> ZoneInfo:
        return ZoneInfo(self.REPORTING_TIMEZONE)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
