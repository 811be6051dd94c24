"""Application configuration via environment variables."""

import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    """Central config; loads from env and .env."""

    app_name: str = "Chat Collaboration API"
    debug: bool = False

    # Database (env: DATABASE_URL)
    database_url: str | None = None

    # Identity provider tokens
    secret_key: str = "your-secret-key-please-change-in-production"
    algorithm: str = "HS256"

    # Completion provider (OpenAI-compatible, e.g. OpenRouter)
    openai_api_key: str | None = None
    openai_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "gpt-4-turbo"
    temperature: float = 0.7
    completion_max_tokens: int = 4000
    stream_timeout_seconds: float = 30.0

    # Conversation
    context_max_tokens: int = 8000
    stale_stream_grace_seconds: int = 120

    # Collaboration
    presence_window_seconds: int = 300
    invite_ttl_days: int = 7
    share_token_length: int = 12
    public_base_url: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    cors_origins: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def get_database_url(self) -> str:
        """Build DATABASE_URL from env, with a local SQLite fallback."""
        url = self.database_url or os.getenv("DATABASE_URL")
        if url:
            if url.startswith("postgres://"):
                return url.replace("postgres://", "postgresql://", 1)
            return url
        return "sqlite:///./chatcollab.db"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
