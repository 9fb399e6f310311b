"""Configuration module for shellgate."""

from shellgate.config.loader import load_config, get_config_path
from shellgate.config.schema import Config, ExecToolConfig

__all__ = ["Config", "ExecToolConfig", "load_config", "get_config_path"]
