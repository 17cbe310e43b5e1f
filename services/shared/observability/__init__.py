"""
Observability helpers for the transaction assistant: telemetry bootstrap,
request-id context, and log-safe text digests.
"""

from .privacy import describe_text, hash_payload
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    bind_request_context,
    configure_logging,
    current_request_id,
    ensure_request_id,
    get_tracer,
    new_request_id,
    reset_request_context,
    setup_telemetry,
)

__all__ = [
    "describe_text",
    "hash_payload",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "bind_request_context",
    "configure_logging",
    "current_request_id",
    "ensure_request_id",
    "get_tracer",
    "new_request_id",
    "reset_request_context",
    "setup_telemetry",
]
