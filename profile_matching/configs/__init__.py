"""Configuration loading and validation."""

from .loader import load_config, default_config, validate_config, get_config_value

__all__ = ["load_config", "default_config", "validate_config", "get_config_value"]
