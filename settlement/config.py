import logging
from datetime import date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Settlement engine settings, read from ``SETTLEMENT_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="SETTLEMENT_", extra="ignore")

    timezone: str = Field(default="America/Sao_Paulo", description="Timezone of the business date")
    log_level: str = "INFO"
    seed_data: bool = True
    api_root_path: str = ""

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    def today(self) -> date:
        """Business date for ledger entries, in the configured timezone."""
        return datetime.now(ZoneInfo(self.timezone)).date()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=LOG_FORMAT)
