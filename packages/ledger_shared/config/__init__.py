"""Public API for shared Ledger configuration utilities."""

from .loader import load_config, load_settings
from .models import (
    DEFAULT_CONFIG_PATH,
    ComponentsSettings,
    LedgerSettings,
    LoggingSettings,
    resolve_component_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ComponentsSettings",
    "LedgerSettings",
    "LoggingSettings",
    "load_config",
    "load_settings",
    "resolve_component_settings",
]
