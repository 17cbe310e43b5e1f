"""
Shared utilities for the transaction assistant service.

This package contains code that is not specific to one request flow:
- assistant_settings: Environment-driven configuration
- observability: Telemetry, logging, and privacy utilities
"""

from .assistant_settings import (
    SUPPORTED_LOCALES,
    SUPPORTED_TONES,
    AssistantSettings,
    AssistantSettingsError,
    StoreConfig,
    load_assistant_settings,
)

__all__ = [
    "SUPPORTED_LOCALES",
    "SUPPORTED_TONES",
    "AssistantSettings",
    "AssistantSettingsError",
    "StoreConfig",
    "load_assistant_settings",
]
