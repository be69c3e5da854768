"""Application settings using Pydantic Settings."""

import os
import platform
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    project_root: Path = Field(default=Path.cwd())
    provider_config_path: Path = Field(
        default=Path(__file__).parent / "providers.yaml"
    )

    # LLM settings
    llm_model: str = Field(default="ollama/mistral:7b")
    llm_timeout: int = Field(default=120)
    ollama_base_url: str = Field(default="http://localhost:11434")
    fallback_enabled: bool = Field(default=True)

    # External provider API keys (optional)
    anthropic_api_key: str | None = Field(default=None)
    openai_api_key: str | None = Field(default=None)
    google_api_key: str | None = Field(default=None)

    # Shell execution settings
    shell_executable: str = Field(default="/bin/bash")
    shell_timeout: int = Field(default=300)
    shell_output_max_chars: int = Field(default=10000)

    # Context fed back to the model
    context_output_max_chars: int = Field(default=1000)
    file_read_max_lines: int = Field(default=400)
    os_name: str = Field(default_factory=platform.system)

    # API settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    event_queue_size: int = Field(default=1000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


settings = Settings()


def configure_project_root(root: Path) -> None:
    """Set project root used by file tools and as the default shell cwd."""
    resolved_root = root.expanduser().resolve()
    settings.project_root = resolved_root

    if os.getenv("PROVIDER_CONFIG_PATH") is None:
        candidate = resolved_root / "providers.yaml"
        if candidate.exists():
            settings.provider_config_path = candidate
