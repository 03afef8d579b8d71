"""Global configuration.

Every user-configurable value is read from the ``.env`` file or the process
environment and loaded here at import time.

Usage:
    1. Copy ``.env.example`` to ``.env`` and adjust it
    2. Or export the variables directly (``DATABASE_URL``, ``POINT_VALUE_BRL`` ...)
"""
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings - every field can be overridden from .env or the environment"""

    # ========== Database ==========
    database_url: str = "sqlite:///data/influencer_ops.db"

    # ========== Points ==========
    # Raw value; parsed and validated by business.points
    point_value_brl: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("POINT_VALUE_BRL", "PONTO_VALOR_BRL"),
    )

    # ========== Logging ==========
    log_level: str = "INFO"
    log_file: str = ""

    # ========== Dashboards ==========
    script_suggestion_limit: int = 15

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
