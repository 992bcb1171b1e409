"""tokentop configuration: environment settings and the user config file."""

from .loader import ConfigError, load_config, merge_with_defaults, save_config
from .schema import AlertsConfig, AppConfig, BudgetsConfig, PluginsConfig

__all__ = [
    "AlertsConfig",
    "AppConfig",
    "BudgetsConfig",
    "ConfigError",
    "PluginsConfig",
    "load_config",
    "merge_with_defaults",
    "save_config",
]
