# src/rasterkit/gaussstretch/config_manager.py
"""
Settings for the Gaussian stretch tool.

Backed by QSettings: the platform store by default, or an INI file when a
path is given.  Values are read through typed, validated descriptors; a
stored value that is missing, unparsable or out of range yields the default.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from PyQt6.QtCore import QSettings

log = logging.getLogger(__name__)

T = TypeVar('T')

ORGANIZATION = "RasterKit"
APPLICATION = "GaussianStretch"


class ConfigValue(Generic[T]):
    """
    Read-only descriptor for a typed configuration value.

    Usage:
        class MyConfig(ConfigManager):
            my_setting = ConfigValue("group/my_setting", default=10, type_=int)
    """
    def __init__(
        self,
        key: str,
        default: T,
        type_: type = str,
        validator: Callable[[T], bool] | None = None,
    ):
        self.key = key
        self.default = default
        self.type_ = type_
        self.validator = validator

    def __get__(self, obj, objtype=None) -> T:
        if obj is None:
            return self  # type: ignore
        value = obj.get(self.key, self.default, self.type_)
        if self.validator and not self.validator(value):
            log.warning("Ignoring invalid setting %s=%r; using default %r",
                        self.key, value, self.default)
            return self.default
        return value


class ConfigManager:
    """Typed, cached reads from a QSettings store."""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, path: str | None = None,
                 organization: str = ORGANIZATION, application: str = APPLICATION):
        if path:
            self._settings = QSettings(str(path), QSettings.Format.IniFormat)
        else:
            self._settings = QSettings(organization, application)
        self._cache: Dict[str, Any] = {}

    @classmethod
    def instance(cls) -> 'ConfigManager':
        """Shared instance over the platform store."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def file_name(self) -> str:
        return self._settings.fileName()

    def get(self, key: str, default: T = None, type_: type = str) -> T:
        """
        Get a configuration value with type conversion.

        Args:
            key: The setting key ("group/name")
            default: Default value if key doesn't exist or cannot be converted
            type_: Expected type (int, float, str)
        """
        cache_key = f"{key}:{type_.__name__}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        value = self._settings.value(key, default)
        if value is None:
            return default

        try:
            value = type_(value)
        except (ValueError, TypeError):
            log.warning("Setting %s=%r is not a valid %s; using default", key, value, type_.__name__)
            value = default

        self._cache[cache_key] = value
        return value


# ============================================================================
# Tool configuration with typed properties
# ============================================================================

class StretchConfig(ConfigManager):
    """
    Gaussian stretch settings.

    Usage:
        config = get_stretch_config("gaussstretch.ini")
        print(config.cutoff_sd)
    """

    _instance: Optional['StretchConfig'] = None

    # Algorithm
    cutoff_sd = ConfigValue("stretch/cutoff_sd", default=3.0, type_=float,
                            validator=lambda v: v > 0)
    num_output_bins = ConfigValue("stretch/num_output_bins", default=1024, type_=int,
                                  validator=lambda v: v >= 2)
    num_bins = ConfigValue("stretch/num_bins", default=50000, type_=int,
                           validator=lambda v: v >= 1)
    chunk_rows = ConfigValue("stretch/chunk_rows", default=256, type_=int,
                             validator=lambda v: v >= 1)

    # I/O
    default_nodata = ConfigValue("io/default_nodata", default=-32768.0, type_=float)

    # Memory
    memmap_threshold_mb = ConfigValue("memory/memmap_threshold_mb", default=500, type_=int,
                                      validator=lambda v: v >= 0)

    # Logging
    log_level = ConfigValue("logging/level", default="INFO", type_=str)

    def stretch_preset(self) -> dict:
        """Algorithm defaults as a command preset."""
        return {
            "cutoff_sd": self.cutoff_sd,
            "num_output_bins": self.num_output_bins,
            "num_bins": self.num_bins,
            "chunk_rows": self.chunk_rows,
        }


def get_stretch_config(path: str | None = None) -> StretchConfig:
    """
    Settings from an INI file when `path` is given, else the shared
    platform-store instance.
    """
    if path:
        return StretchConfig(path)
    return StretchConfig.instance()  # type: ignore
