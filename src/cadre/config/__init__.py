"""Configuration models and YAML loading."""

from cadre.config.loader import ConfigError, load_config, save_config
from cadre.config.schema import CadreConfig

__all__ = ["CadreConfig", "ConfigError", "load_config", "save_config"]
