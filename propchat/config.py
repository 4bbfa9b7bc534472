"""
Application configuration using pydantic-settings.

Values come from the environment (or a local .env file) with defaults that
work for local development against a MongoDB on localhost.
"""

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Property Chat Service"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "propchat"

    # JWT issued by the marketplace auth service
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Realtime fan-out; unset means in-process delivery only
    REDIS_URL: Optional[str] = None
    PRESENCE_TTL_SECONDS: int = 60

    # Messaging limits
    MESSAGE_MAX_LENGTH: int = 2000
    MESSAGE_PAGE_DEFAULT: int = 50
    MESSAGE_PAGE_MAX: int = 100
    PREVIEW_LENGTH: int = 200
    MESSAGE_RATE_LIMIT: int = 10
    MESSAGE_RATE_WINDOW_SECONDS: int = 30

    # cross-worker append serialization on the conversation document
    APPEND_LEASE_SECONDS: int = 5
    APPEND_LEASE_WAIT_SECONDS: float = 10.0

    # CORS - comma-separated string
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
