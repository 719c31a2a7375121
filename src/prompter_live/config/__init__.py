"""Runtime configuration models and the YAML loader."""

from prompter_live.config.loader import ConfigLoader, YamlConfigLoader
from prompter_live.config.models import AppConfig, CliOverrides, ConfigLoadRequest

__all__ = ["AppConfig", "CliOverrides", "ConfigLoadRequest", "ConfigLoader", "YamlConfigLoader"]
