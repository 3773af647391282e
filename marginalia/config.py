"""
Marginalia Configuration System

Hierarchical configuration with environment variable overrides.
Uses Pydantic Settings for type validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional, Literal
import os

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml


class SearchConfig(BaseSettings):
    """Web search configuration."""

    provider: Literal["serper"] = "serper"
    endpoint: str = "https://google.serper.dev/search"
    api_key: str = Field(
        default="",
        validation_alias=AliasChoices("MARGINALIA_SEARCH_API_KEY", "SERPER_API_KEY"),
    )
    timeout: float = 15.0
    default_limit: int = 6

    model_config = SettingsConfigDict(env_prefix="MARGINALIA_SEARCH_", populate_by_name=True)


class FetchConfig(BaseSettings):
    """Safe fetcher configuration."""

    timeout: float = 8.0  # seconds per page
    max_bytes: int = 1_500_000
    max_redirects: int = 5
    user_agent: str = "research-agent/1.0"

    model_config = SettingsConfigDict(env_prefix="MARGINALIA_FETCH_")


class LLMConfig(BaseSettings):
    """Language model service configuration (OpenAI-compatible endpoint)."""

    provider: Literal["openai-compatible"] = "openai-compatible"
    base_url: str = "https://dashscope-intl.aliyuncs.com/compatible-mode/v1"
    api_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "MARGINALIA_LLM_API_KEY", "DASHSCOPE_API_KEY", "OPENAI_API_KEY"
        ),
    )
    model: str = "qwen-plus"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: float = 60.0

    model_config = SettingsConfigDict(env_prefix="MARGINALIA_LLM_", populate_by_name=True)


class ResearchConfig(BaseSettings):
    """Research agent behaviour configuration."""

    database: str = "data/blog.db"
    timezone: str = "Pacific/Auckland"  # civil zone for persisted timestamps
    default_mode: Literal["quick", "standard", "deep"] = "standard"
    rate_limit_window: float = 600.0  # seconds
    rate_limit_max_runs: int = 5
    query_fallback_words: int = 48
    planner_content_chars: int = 1800
    article_excerpt_chars: int = 2000
    source_text_chars: int = 1800
    event_queue_size: int = 100

    model_config = SettingsConfigDict(env_prefix="MARGINALIA_RESEARCH_")


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    json_format: bool = False  # single-line JSON records
    file: Optional[str] = None  # Optional log file path

    model_config = SettingsConfigDict(env_prefix="MARGINALIA_LOG_")


class Settings(BaseSettings):
    """
    Main application settings.

    Configuration priority (highest to lowest):
    1. Environment variables (MARGINALIA_*)
    2. .env file
    3. Config YAML file
    4. Default values
    """

    app_name: str = "Marginalia"
    version: str = "1.0.0"
    environment: Literal["development", "production", "test"] = "development"

    # Sub-configurations
    search: SearchConfig = Field(default_factory=SearchConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    research: ResearchConfig = Field(default_factory=ResearchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="MARGINALIA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        if not path.exists():
            return cls()

        with open(path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration with proper precedence.

    Args:
        config_path: Optional path to YAML config file.
                    If not provided, checks MARGINALIA_CONFIG_PATH,
                    then falls back to config/<environment>.yaml and
                    config/default.yaml
    """
    if config_path is None:
        config_path = os.environ.get("MARGINALIA_CONFIG_PATH")

    if config_path is None:
        env = os.environ.get("MARGINALIA_ENVIRONMENT", "development")
        possible_paths = [
            Path(f"config/{env}.yaml"),
            Path("config/default.yaml"),
        ]
        for p in possible_paths:
            if p.exists():
                config_path = str(p)
                break

    if config_path and Path(config_path).exists():
        return Settings.from_yaml(Path(config_path))
    return Settings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Use this as the primary way to access settings throughout the app.
    The settings are cached after first load.
    """
    return load_config()


def clear_settings_cache():
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
