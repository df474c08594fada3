from datetime import timezone, tzinfo
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator


def reference_zone(name) -> tzinfo:
    """
    Resolve a configured zone name; `UTC` needs no tz database.
    """
    zone_name = str(name or "UTC").strip()
    if zone_name.upper() in {"UTC", "Z"}:
        return timezone.utc
    return ZoneInfo(zone_name)


class Settings(BaseSettings):
    # App Config
    APP_NAME: str = "MedGuard Log Sentinel"
    APP_ENV: str = "development"
    PORT: int = 8000
    DEBUG: bool = True
    LOG_LEVEL: str = Field(default="INFO")

    # Database
    DATABASE_URL: str = "sqlite:///./medguard.db"

    # External log sources
    LOG_TABLE: str = Field(default="system_logs")
    FETCH_PAGE_LIMIT: int = Field(default=100)
    MAX_FETCH_LIMIT: int = Field(default=1000)
    SOURCE_TIMEOUT_SECONDS: float = Field(default=15.0)

    # Sweeps
    SWEEP_PER_SYSTEM_LIMIT: int = Field(default=50)
    SWEEP_MAX_WORKERS: int = Field(default=4)
    SWEEP_INTERVAL_SECONDS: int = Field(default=0)  # 0 disables the scheduler

    # Detection rules
    TRUSTED_IP_PREFIXES: List[str] = Field(
        default_factory=lambda: ["127.", "::1", "10.", "192.168.", "172.16."]
    )
    BUSINESS_HOURS_START: int = Field(default=6)
    BUSINESS_HOURS_END: int = Field(default=22)
    REFERENCE_TIMEZONE: str = Field(default="UTC")
    AUTOMATION_SIGNATURES: List[str] = Field(
        default_factory=lambda: ["bot", "crawler", "script"]
    )

    @field_validator("REFERENCE_TIMEZONE")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            reference_zone(value)
        except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
            raise ValueError(f"Unknown time zone: {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _business_hours_window(self):
        if not 0 <= self.BUSINESS_HOURS_START < self.BUSINESS_HOURS_END <= 24:
            raise ValueError(
                "Business hours must satisfy 0 <= BUSINESS_HOURS_START < BUSINESS_HOURS_END <= 24"
            )
        return self

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def rule_context(source: Settings = None) -> dict:
    """
    Snapshot of the detection tunables handed to every rule evaluation.
    """
    cfg = source or settings
    return {
        "trusted_ip_prefixes": list(cfg.TRUSTED_IP_PREFIXES),
        "business_hours_start": cfg.BUSINESS_HOURS_START,
        "business_hours_end": cfg.BUSINESS_HOURS_END,
        "reference_timezone": cfg.REFERENCE_TIMEZONE,
        "automation_signatures": list(cfg.AUTOMATION_SIGNATURES),
    }
