"""Configuration helpers for the identity pipeline."""

from .environment import EnvironmentProbe
from .settings import (
    DEFAULT_AUTHORITY_HOST,
    RetryMode,
    RetryOptions,
    Settings,
    SettingsManager,
    TransportOptions,
)

__all__ = [
    "DEFAULT_AUTHORITY_HOST",
    "EnvironmentProbe",
    "RetryMode",
    "RetryOptions",
    "Settings",
    "SettingsManager",
    "TransportOptions",
]
