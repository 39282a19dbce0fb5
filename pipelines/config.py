"""
pipelines/config.py

Runtime settings, read from the environment (prefix ``MN_``) or a local
``.env`` file.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="MN_", env_file=".env", extra="ignore")

    # Storage
    data_dir: Path = Field(default=_PROJECT_ROOT / "data")
    backend: Literal["json", "sqlite"] = "json"
    storage_prefix: str = "gestion_patient_mn_"
    sqlite_filename: str = "gestion_patient_mn.db"

    # Patients collection encrypted at rest (key from APP_DATA_KEY)
    encrypt_patients: bool = False

    # Demo content on first run
    seed_demo_data: bool = True

    log_level: str = "INFO"

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / self.sqlite_filename


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    logger.debug("Settings loaded: backend=%s data_dir=%s", settings.backend, settings.data_dir)
    return settings
