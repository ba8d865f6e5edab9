"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:4000/api"
    access_token: Optional[str] = None  # set for signed-in users; guests leave it empty
    timeout: float = 60.0
    stream_queue_size: int = 64


class ChatConfig(BaseModel):
    streaming: bool = True
    conversation_id: Optional[str] = None
    context: dict[str, str] = Field(default_factory=dict)


class QuotaConfig(BaseModel):
    daily_limit: int = 2
    key: str = "ai_guest_usage"
    storage_path: str = "./data/guest_usage.json"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    api: ApiConfig = Field(default_factory=ApiConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced by other values, resolve it first
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    config = AppConfig(**data)
    # An unresolved ${VAR} means the variable was never set
    if config.api.access_token and _ENV_VAR_PATTERN.fullmatch(config.api.access_token):
        config.api.access_token = None
    return config
