"""
Client for the remote assistant endpoint.

The endpoint answers in one of three shapes, which `send` classifies before
handing control back to the session:

- an error status (401/403/429 are quota signals, anything else is a failure),
- a JSON envelope `{"kind": "action" | "message", ...}`,
- a line-framed stream consumed through `StreamReply.chunks`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from http_client import ResilientHttpClient, parse_retry_after

logger = logging.getLogger(__name__)

QUOTA_STATUS_CODES = {401, 403, 429}


class AssistantResponseError(RuntimeError):
    """The assistant endpoint returned an unusable response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AssistantAction(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class AddTransactionPayload(BaseModel):
    title: str = Field(min_length=1)
    amount: float = Field(gt=0, allow_inf_nan=False)
    budget_name: str | None = None
    date: str | None = None


class ActionReply(BaseModel):
    kind: Literal["action"]
    action: AssistantAction
    confirm_text: str = Field(default="", alias="confirmText")


class MessageReply(BaseModel):
    kind: Literal["message"]
    message: str


JsonReply = Annotated[Union[ActionReply, MessageReply], Field(discriminator="kind")]
_JSON_REPLY = TypeAdapter(JsonReply)


@dataclass(frozen=True)
class RateLimitedReply:
    status_code: int
    retry_after: float | None = None


@dataclass(frozen=True)
class StreamReply:
    chunks: AsyncIterator[bytes]


AssistantReply = Union[ActionReply, MessageReply, RateLimitedReply, StreamReply]


class AssistantClient:
    def __init__(self, http: ResilientHttpClient, url: str) -> None:
        self._http = http
        self._url = url

    @asynccontextmanager
    async def send(
        self,
        *,
        token: str,
        user_id: str,
        message: str,
        tone: str,
        locale: str,
        request_id: str,
    ) -> AsyncIterator[AssistantReply]:
        body = {"userId": user_id, "message": message, "tone": tone, "locale": locale}
        async with self._http.stream(
            "POST",
            self._url,
            request_id=request_id,
            headers={"Authorization": f"Bearer {token}"},
            json=body,
        ) as response:
            if response.status_code in QUOTA_STATUS_CODES:
                yield RateLimitedReply(
                    status_code=response.status_code,
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )
                return
            if not response.is_success:
                raise AssistantResponseError(
                    f"Assistant returned status {response.status_code}",
                    status_code=response.status_code,
                )
            if "application/json" in response.headers.get("content-type", ""):
                yield parse_json_reply(await response.aread())
                return
            yield StreamReply(chunks=response.aiter_bytes())


def parse_json_reply(raw: bytes | str) -> ActionReply | MessageReply:
    """Validate a JSON envelope; a bare `{"message": "..."}` without `kind` is read as a message."""

    try:
        payload = json.loads(raw)
        if isinstance(payload, dict) and "kind" not in payload and isinstance(payload.get("message"), str):
            return MessageReply(kind="message", message=payload["message"])
        return _JSON_REPLY.validate_python(payload)
    except (ValueError, ValidationError) as exc:
        logger.warning({"event": "assistant_unexpected_json", "error": str(exc)})
        raise AssistantResponseError("Unexpected JSON response from assistant") from exc
