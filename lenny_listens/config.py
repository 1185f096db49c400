from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from lenny_listens.errors import ConfigurationError

STRATEGIES = ("direct", "stream", "agent", "delegate")

class Settings(BaseSettings):
    PERSPECTIVE_API_TOKEN: str | None = None
    PERSPECTIVE_API_URL: str = "https://getperspective.ai/api/v1"
    PERSPECTIVE_MCP_URL: str = "https://getperspective.ai/mcp"
    PERSPECTIVE_WORKSPACE_SLUG: str | None = None
    PERSPECTIVE_WORKSPACE_ID: str = "66b2a843beda3ed6fd4507bd"
    PREVIEW_HOST: str = "pv.getperspective.ai"
    SHARE_HOST: str = "getperspective.ai"

    GENERATION_STRATEGY: str = "direct"  # direct|stream|agent|delegate
    GENERATE_ENDPOINT_STRATEGY: str = "stream"
    GENERATOR_URL: str | None = None
    DISPATCH_MODE: str = "sync"  # sync|background
    MARK_GENERATING: bool = True
    HTTP_TIMEOUT_SECONDS: float = 30.0
    STREAM_TIMEOUT_SECONDS: float = 60.0

    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4.1-mini"
    AGENT_MAX_TURNS: int = 3

    KV_BACKEND: str = "sql"  # sql|rest|none
    DB_URL: str = "sqlite:///./data/lenny_listens.db"
    KV_REST_API_URL: str | None = None
    KV_REST_API_TOKEN: str | None = None
    SESSION_TTL_SECONDS: int = 3600
    LATEST_SCAN_LIMIT: int = 10

    LOG_LEVEL: str = "INFO"
    cors_allow_origins: List[str] = ["*"]
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def validate_for_startup(self) -> None:
        """Fail fast when the configured strategy cannot run."""
        for name in (self.GENERATION_STRATEGY, self.GENERATE_ENDPOINT_STRATEGY):
            if name not in STRATEGIES:
                raise ConfigurationError(f"unknown generation strategy {name!r}")
        if self.GENERATE_ENDPOINT_STRATEGY == "delegate":
            raise ConfigurationError("GENERATE_ENDPOINT_STRATEGY cannot delegate to itself")
        if self.DISPATCH_MODE not in ("sync", "background"):
            raise ConfigurationError(f"unknown DISPATCH_MODE {self.DISPATCH_MODE!r}")
        configured = {self.GENERATION_STRATEGY, self.GENERATE_ENDPOINT_STRATEGY}
        if "delegate" in configured and not self.GENERATOR_URL:
            raise ConfigurationError("GENERATOR_URL is required for the delegate strategy")
        # /generate always runs a Perspective-facing strategy
        if not self.PERSPECTIVE_API_TOKEN:
            raise ConfigurationError("PERSPECTIVE_API_TOKEN is required")
        if "agent" in configured and not self.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required for the agent strategy")

@lru_cache
def get_settings() -> Settings:
    return Settings()
