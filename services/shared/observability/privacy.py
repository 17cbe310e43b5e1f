"""
Log-safety helpers: user-typed text (transaction descriptions, chat messages)
must never reach the logs verbatim.
"""

import hashlib
import json
from typing import Any

DIGEST_LENGTH = 16


def hash_payload(value: Any) -> str:
    """
    Stable SHA-256 hex digest of a payload.

    Strings are hashed as UTF-8, bytes as-is, anything else as sorted JSON.
    """

    if value is None:
        raw = b"null"
    elif isinstance(value, bytes):
        raw = value
    elif isinstance(value, str):
        raw = value.encode("utf-8")
    else:
        raw = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def describe_text(text: str) -> dict[str, Any]:
    """Loggable stand-in for a user message: its length and a short digest."""

    return {"chars": len(text), "sha256": hash_payload(text)[:DIGEST_LENGTH]}
