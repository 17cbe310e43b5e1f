from __future__ import annotations

"""
Environment-driven configuration for the transaction assistant.

The session, the collaborator clients, and the HTTP surface all read the same
set of environment variables. Loading and validating them in one place keeps
timeouts, cooldowns, and locale defaults consistent between the FastAPI app
and any script that drives an `AssistantSession` directly.
"""

import os
from dataclasses import dataclass
from typing import Optional

SUPPORTED_LOCALES = ("en", "uk", "ru", "hi", "id", "ja", "ko")
SUPPORTED_TONES = frozenset({"neutral", "friendly", "formal", "playful"})

DEFAULT_ASSISTANT_URL = "http://localhost:3000/api/chat"
DEFAULT_QUOTA_URL = "http://localhost:3000/api/ai/consume"


class AssistantSettingsError(RuntimeError):
    """Raised when assistant configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class StoreConfig:
    api_url: str
    api_key: str


@dataclass(frozen=True, slots=True)
class AssistantSettings:
    assistant_url: str
    quota_url: str
    timeout_seconds: float
    default_cooldown_seconds: float
    default_locale: str
    tone: str
    store: Optional[StoreConfig] = None


def load_assistant_settings(
    *,
    default_timeout: float = 45.0,
    default_cooldown: float = 3.0,
) -> AssistantSettings:
    """
    Construct AssistantSettings from the process environment.

    Args:
        default_timeout: Ceiling for a remote assistant call when
            `ASSISTANT_TIMEOUT_SECONDS` is unset.
        default_cooldown: Rate-limit cooldown used when the server sends no
            Retry-After signal and `ASSISTANT_DEFAULT_COOLDOWN_SECONDS` is unset.
    """

    timeout_seconds = _parse_positive_float(
        os.getenv("ASSISTANT_TIMEOUT_SECONDS"), default_timeout, "ASSISTANT_TIMEOUT_SECONDS"
    )
    cooldown_seconds = _parse_positive_float(
        os.getenv("ASSISTANT_DEFAULT_COOLDOWN_SECONDS"), default_cooldown, "ASSISTANT_DEFAULT_COOLDOWN_SECONDS"
    )

    return AssistantSettings(
        assistant_url=_read_url("ASSISTANT_API_URL", DEFAULT_ASSISTANT_URL),
        quota_url=_read_url("QUOTA_API_URL", DEFAULT_QUOTA_URL),
        timeout_seconds=timeout_seconds,
        default_cooldown_seconds=cooldown_seconds,
        default_locale=_normalize_locale(os.getenv("ASSISTANT_DEFAULT_LOCALE")),
        tone=_normalize_tone(os.getenv("ASSISTANT_TONE")),
        store=_build_store_config(),
    )


def _read_url(env_key: str, default: str) -> str:
    raw_value = (os.getenv(env_key) or "").strip()
    if not raw_value:
        return default
    if not raw_value.startswith(("http://", "https://")):
        raise AssistantSettingsError(f"{env_key} must be an http(s) URL (received '{raw_value}')")
    return raw_value


def _normalize_locale(raw_value: Optional[str]) -> str:
    candidate = (raw_value or "").strip().lower()
    if not candidate:
        return "en"

    if candidate not in SUPPORTED_LOCALES:
        raise AssistantSettingsError(f"Unsupported default locale '{candidate}'")
    return candidate


def _normalize_tone(raw_value: Optional[str]) -> str:
    candidate = (raw_value or "").strip().lower()
    if not candidate:
        return "neutral"

    if candidate not in SUPPORTED_TONES:
        raise AssistantSettingsError(f"Unsupported assistant tone '{candidate}'")
    return candidate


def _parse_positive_float(raw_value: Optional[str], default: float, env_key: str) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:
        raise AssistantSettingsError(f"{env_key} must be numeric (received '{raw_value}')") from exc
    if value <= 0:
        raise AssistantSettingsError(f"{env_key} must be positive (received '{raw_value}')")
    return value


def _build_store_config() -> Optional[StoreConfig]:
    api_url = (os.getenv("STORE_API_URL") or "").strip()
    if not api_url:
        return None

    api_key = (os.getenv("STORE_API_KEY") or "").strip()
    if not api_key:
        raise AssistantSettingsError("STORE_API_URL requires STORE_API_KEY")
    return StoreConfig(api_url=api_url.rstrip("/"), api_key=api_key)
