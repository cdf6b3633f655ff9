"""
config.py
Environment-driven settings and logging setup.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path


class Settings:
    """Application settings loaded from environment variables."""

    DB_FILE: Path = Path(os.getenv("POLICARDMED_DB_FILE", str(Path(__file__).with_name("policardmed.db"))))
    APP_ID: str = os.getenv("POLICARDMED_APP_ID", "default-policardmed-app")

    ADMIN_USERNAME: str = os.getenv("POLICARDMED_ADMIN_USERNAME", "admin@policardmed.com")
    ADMIN_DEFAULT_PASSWORD: str = os.getenv("POLICARDMED_ADMIN_PASSWORD", "admin123")
    BCRYPT_ROUNDS: int = int(os.getenv("POLICARDMED_BCRYPT_ROUNDS", "12"))

    SNAPSHOT_POLL_SECONDS: float = float(os.getenv("POLICARDMED_SNAPSHOT_POLL_SECONDS", "1.0"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
