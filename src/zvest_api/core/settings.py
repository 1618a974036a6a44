from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./zvest.db"
    database_echo: bool = False
    tracing_enabled: bool = True

    # POS integration security
    pos_api_key: str = ""

    # Coupon redemption lifecycle
    redemption_validity_seconds: int = Field(default=5 * 60, gt=0)
    redemption_code_max_attempts: int = Field(default=10, gt=0)
    ledger_request_timeout_seconds: float = 5.0

    # Optional expiry sweep; validation expires lazily regardless
    redemption_expiry_worker_enabled: bool = False
    redemption_expiry_interval_seconds: int = 60
    redemption_expiry_batch_size: int = 200

    # Staff-facing localization
    default_staff_locale: Literal["sl", "en"] = "sl"
    supported_staff_locales: list[str] = Field(default_factory=lambda: ["sl", "en"])

    @field_validator("supported_staff_locales", mode="before")
    @classmethod
    def _parse_locale_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
