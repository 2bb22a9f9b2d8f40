"""Configuration management for the MCP chat gateway"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services.llm_client import DEFAULT_MODELS, LLMConfig, LLMProvider


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Language model
    llm_provider: Literal["anthropic", "openai", "echo"] = "anthropic"
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    llm_model: str | None = None
    llm_max_tokens: int = 1000
    llm_temperature: float | None = 0.7
    llm_timeout: float = 60.0
    llm_system_prompt: str | None = None

    # File paths
    servers_config_path: str = "mcp_config.json"
    log_dir: str | None = "run"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"

    # Tool pipeline
    approval_mode: Literal["auto", "external"] = "auto"
    approval_timeout: float = Field(default=30.0, gt=0)
    reconnect_max_attempts: int = Field(default=3, ge=0)
    reconnect_base_delay: float = Field(default=1.0, ge=0)
    narrative_mentions: bool = True
    narrative_known_tools_only: bool = False
    max_tool_calls_per_turn: int = Field(default=10, ge=1)
    autoconnect: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @property
    def llm_api_key(self) -> str | None:
        if self.llm_provider == "openai":
            return self.openai_api_key
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return None

    def llm_config(self) -> LLMConfig:
        """Adapter configuration for the selected provider."""
        provider = LLMProvider(self.llm_provider)
        return LLMConfig(
            provider=provider,
            model=self.llm_model or DEFAULT_MODELS[provider],
            api_key=self.llm_api_key,
            base_url=self.openai_base_url if provider is LLMProvider.OPENAI else None,
            max_tokens=self.llm_max_tokens,
            temperature=self.llm_temperature,
            timeout=self.llm_timeout,
            system_prompt=self.llm_system_prompt,
        )


@lru_cache
def get_settings() -> Settings:
    """Get the cached configuration instance."""
    return Settings()
