"""Configuration: YAML defaults with environment overrides."""

from chatstream.config.loader import Config, get_config

__all__ = ["Config", "get_config"]
