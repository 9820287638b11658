"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from .env file."""

    # Database
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "circledrive"
    mysql_password: str = ""
    mysql_db: str = "circle_drive"

    # Continuous position watch
    watch_high_accuracy: bool = True
    watch_max_fix_age_ms: int = 2000
    watch_deadline_ms: int = 30000

    # One-shot fix requested when sharing is switched on
    bootstrap_high_accuracy: bool = True
    bootstrap_max_fix_age_ms: int = 0
    bootstrap_deadline_ms: int = 20000

    # Minimum wall-clock gap between reward observations per user
    reward_interval_seconds: float = 30.0

    # Seed for the battery fallback heuristics; None means unseeded
    random_seed: Optional[int] = None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
