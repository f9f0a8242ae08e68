"""Configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=3000, description="Server port")
    log_level: str = Field(default="info", description="Logging level")

    # Upstream settings
    deepseek_api_key: str = Field(
        ...,
        min_length=1,
        description="Upstream API key (DEEPSEEK_API_KEY)",
    )
    upstream_base_url: str = Field(
        default="https://api.deepseek.com",
        description="Upstream API base URL",
    )
    chat_path: str = Field(
        default="/v1/chat/completions",
        description="Upstream chat completions path",
    )
    user_agent: str = Field(default="DeepSeek-Proxy/1.0", description="Outbound User-Agent")
    available_models: list[str] = Field(
        default_factory=lambda: ["deepseek-chat", "deepseek-reasoner", "deepseek-coder"],
        description="Models advertised by /v1/models",
    )

    # Proxy settings
    request_timeout: float = Field(default=60.0, description="Non-streaming timeout in seconds")
    stream_timeout: float = Field(default=120.0, description="Streaming idle timeout in seconds")
    max_connections: int = Field(default=50, description="Max concurrent upstream sockets")
    keep_alive: bool = Field(default=False, description="Reuse upstream connections")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
