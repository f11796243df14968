"""Load configuration from YAML and environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatstream.core.chunker import Granularity
from chatstream.core.emitter import DEFAULT_INTER_STEP_DELAY_MS, EmitOptions

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class StreamingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STREAMING_", extra="ignore")
    granularity: Granularity = Granularity.WORD
    inter_step_delay_ms: int = Field(default=DEFAULT_INTER_STEP_DELAY_MS, ge=0)

    def to_options(self) -> EmitOptions:
        return EmitOptions(
            granularity=self.granularity, inter_step_delay_ms=self.inter_step_delay_ms
        )


class DataStreamSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DATA_STREAM_", extra="ignore")
    max_events: int = Field(default=1000, ge=1)
    idle_clear_seconds: Optional[float] = 5.0


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")
    url: str = "redis://localhost:6379/0"
    channel: str = "chatstream:stream_update"


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")
    level: str = "INFO"
    use_json: bool = True


class Config(BaseSettings):
    """Application config: YAML + env."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    data_stream: DataStreamSettings = Field(default_factory=DataStreamSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_prefix = os.getenv("CHATSTREAM_ENV_PREFIX", "")
        if env_prefix:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_prefix}.yaml")))
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            yaml_data.setdefault("redis", {})["url"] = redis_url
        granularity = os.getenv("STREAMING_GRANULARITY")
        if granularity:
            yaml_data.setdefault("streaming", {})["granularity"] = granularity.strip().lower()
        delay = os.getenv("STREAMING_INTER_STEP_DELAY_MS")
        if delay:
            yaml_data.setdefault("streaming", {})["inter_step_delay_ms"] = int(delay)
        level = os.getenv("LOG_LEVEL")
        if level:
            yaml_data.setdefault("logging", {})["level"] = level
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)
