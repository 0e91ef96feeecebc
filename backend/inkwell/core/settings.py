"""Environment-driven configuration for the Inkwell backend."""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# .env in the working directory, if any, fills unset variables
load_dotenv()


def _csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """Settings snapshot taken from the environment at import time."""

    project_name: str = os.getenv("PROJECT_NAME", "Inkwell Assistant Backend")
    version: str = os.getenv("PROJECT_VERSION", "0.1.0")
    api_prefix: str = os.getenv("API_PREFIX", "/api")
    environment: str = os.getenv("ENVIRONMENT", "local")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cors_origins: tuple[str, ...] = _csv(os.getenv("CORS_ORIGINS", "*"))

    # LLM provider configuration
    anthropic_api_key: str | None = os.getenv("ANTHROPIC_API_KEY")
    anthropic_model: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
    generation_max_tokens: int = int(os.getenv("GENERATION_MAX_TOKENS", "2048"))
    generation_timeout_seconds: float = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "120"))

    # Tool loop
    tool_timeout_seconds: float = float(os.getenv("TOOL_TIMEOUT_SECONDS", "45"))
    max_tool_iterations: int = int(os.getenv("MAX_TOOL_ITERATIONS", "8"))

    # Research browser pool
    research_pool_size: int = int(os.getenv("RESEARCH_POOL_SIZE", "2"))
    research_pool_timeout_seconds: float = float(os.getenv("RESEARCH_POOL_TIMEOUT_SECONDS", "30"))
    research_user_agent: str = os.getenv("RESEARCH_USER_AGENT", "inkwell-research/0.1")
    research_max_text_chars: int = int(os.getenv("RESEARCH_MAX_TEXT_CHARS", "6000"))

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL; ``DATABASE_URL`` wins over the SQLite file path."""
        return os.getenv("DATABASE_URL") or f"sqlite:///{self.database_path}"

    @property
    def database_path(self) -> str:
        """SQLite file, ``inkwell.db`` next to the package unless ``DATABASE_PATH`` is set."""
        configured = os.getenv("DATABASE_PATH")
        if configured:
            return configured
        return str(Path(__file__).resolve().parents[2] / "inkwell.db")


@lru_cache
def get_settings() -> Settings:
    return Settings()
