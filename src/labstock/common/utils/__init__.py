from labstock.common.utils.config_errors import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
    MissingEnvironmentVariableError,
)
from labstock.common.utils.config_loader import ConfigLoader
from labstock.common.utils.settings_base import BaseSettings

__all__ = [
    "BaseSettings",
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigValidationError",
    "MissingEnvironmentVariableError",
    "ConfigLoader",
]
