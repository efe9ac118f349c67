from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URL = "mongodb://localhost:27017"
MONGO_URL_PATTERN = re.compile(r"^mongodb(\+srv)?://")


class Settings(BaseSettings):
    """Application settings loaded from environment variables (and ``.env``)."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Project info
    PROJECT_NAME: str = "Taskboard API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: Literal["development", "production"] = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"

    # Document store
    STORE_BACKEND: Literal["mongo", "memory"] = "mongo"
    MONGO_URL: str = DEFAULT_MONGO_URL
    DB_NAME: str = "taskmanager"
    MONGO_CONNECT_RETRIES: int = 3
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = 5000

    # CORS
    FRONTEND_URL: Optional[str] = None
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Behaviour toggles
    MISSING_BOARD_POLICY: Literal["placeholder", "fail"] = "placeholder"
    LEGACY_EMPTY_RESPONSES: bool = False
    MOVE_RETRIES: int = 3

    @field_validator("MONGO_URL")
    @classmethod
    def _check_mongo_url(cls, value: str) -> str:
        if not MONGO_URL_PATTERN.match(value):
            logger.warning("MONGO_URL must start with mongodb:// or mongodb+srv://, using %s", DEFAULT_MONGO_URL)
            return DEFAULT_MONGO_URL
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def allowed_origins(self) -> List[str]:
        origins = list(self.CORS_ORIGINS)
        if self.FRONTEND_URL and self.FRONTEND_URL not in origins:
            origins.insert(0, self.FRONTEND_URL)
        return origins


@lru_cache()
def get_settings() -> Settings:
    return Settings()


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_logging_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _logging_configured
    root = logging.getLogger()
    if not _logging_configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _logging_configured = True
    root.setLevel(level.upper())
