from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./campus_points.db"
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Internal API security
    internal_api_key: str = ""

    # Calendar day used by the check-in reward schedule
    points_timezone: str = "UTC"

    # Check-in gate
    checkin_early_window_minutes: int = 15
    checkin_daily_reward_limit: int = 3
    checkin_base_reward_points: int = 20
    checkin_reward_step_points: int = 5
    checkin_reward_floor_points: int = 5
    checkin_require_proof_match: bool = True
    checkin_staff_roles: list[str] = Field(default_factory=lambda: ["faculty", "admin"])
    checkin_registration_exempt_roles: list[str] = Field(default_factory=lambda: ["admin"])

    @field_validator(
        "checkin_staff_roles",
        "checkin_registration_exempt_roles",
        "points_blocking_restriction_types",
        mode="before",
    )
    @classmethod
    def _parse_name_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []

    # Redemptions
    redemption_validity_days: int = 30
    redemption_code_max_attempts: int = 5
    redemption_code_default_prefix: str = "CPN"
    redemption_code_suffix_length: int = 4

    # Restrictions that suspend earning and spending
    points_blocking_restriction_types: list[str] = Field(
        default_factory=lambda: ["account_suspended", "account_banned"]
    )

    # Tracing (OTLP endpoint read from OTEL_EXPORTER_OTLP_ENDPOINT)
    tracing_enabled: bool = True

    # Transient storage fault handling
    transaction_retry_attempts: int = 3
    transaction_retry_backoff_seconds: float = 0.05

    # Reporting
    leaderboard_default_limit: int = 10
    recent_transactions_limit: int = 20


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
