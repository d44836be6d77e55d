"""Provider settings model and loaders."""

from clibridge.config.models import ProviderSettings
from clibridge.config.parser import ConfigError, load_settings, settings_from_mapping

__all__ = [
    "ConfigError",
    "ProviderSettings",
    "load_settings",
    "settings_from_mapping",
]
