"""
Incremental decoder for the line-framed assistant stream.

Each line starts with a frame code:

    0:"text delta"                                   append text
    9:{"toolCallId","toolName","args"}               announce a tool call
    a:{"toolCallId","result"}                        resolve a pending tool call

Any other non-empty line is plain text (an SSE `data:` prefix is dropped).
A recognized frame whose payload fails to parse or validate is treated as
plain text, so a decode anomaly never aborts the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from assistant_models import ConversationMessage, ToolCall
from locales import Notice, notice_text

logger = logging.getLogger(__name__)

TEXT_FRAME = "0:"
TOOL_CALL_FRAME = "9:"
TOOL_RESULT_FRAME = "a:"
SSE_DATA_PREFIX = "data:"

_PROVIDER_EMPTY_RE = re.compile(r"LLM provider returned empty text candidates\.", re.IGNORECASE)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class RawFallback:
    text: str


class ToolCallFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_call_id: str = Field(alias="toolCallId", min_length=1)
    tool_name: str = Field(alias="toolName", min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_call_id: str = Field(alias="toolCallId", min_length=1)
    result: Any = None


Frame = Union[TextDelta, ToolCallFrame, ToolResultFrame, RawFallback]


def parse_frame(line: str) -> Frame | None:
    """Map one complete line to a frame. Blank lines yield None."""

    stripped = line.rstrip("\r")
    if not stripped.strip():
        return None

    try:
        if stripped.startswith(TEXT_FRAME):
            text = json.loads(stripped[len(TEXT_FRAME) :])
            if isinstance(text, str):
                return TextDelta(text)
        elif stripped.startswith(TOOL_CALL_FRAME):
            return ToolCallFrame.model_validate_json(stripped[len(TOOL_CALL_FRAME) :])
        elif stripped.startswith(TOOL_RESULT_FRAME):
            return ToolResultFrame.model_validate_json(stripped[len(TOOL_RESULT_FRAME) :])
        else:
            return RawFallback(_strip_data_prefix(stripped))
    except (ValueError, ValidationError) as exc:
        logger.debug({"event": "stream_frame_fallback", "error": str(exc)})

    return RawFallback(_strip_data_prefix(stripped))


def _strip_data_prefix(line: str) -> str:
    if line.startswith(SSE_DATA_PREFIX):
        return line[len(SSE_DATA_PREFIX) :].lstrip()
    return line


class StreamDecoder:
    """
    Consumes raw byte chunks and keeps `message` up to date.

    Bytes are decoded incrementally so a multi-byte character split across
    chunks is reassembled; only newline-terminated lines are parsed until
    `close()` flushes the remainder.
    """

    def __init__(self, message: ConversationMessage | None = None) -> None:
        self.message = message or ConversationMessage(role="assistant")
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._closed = False

    def feed(self, chunk: bytes) -> list[Frame]:
        if self._closed:
            raise RuntimeError("StreamDecoder is closed")
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._apply_lines(lines)

    def close(self) -> list[Frame]:
        if self._closed:
            return []
        self._closed = True
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._apply_lines([remainder])

    def _apply_lines(self, lines: list[str]) -> list[Frame]:
        frames: list[Frame] = []
        for line in lines:
            frame = parse_frame(line)
            if frame is None:
                continue
            self._apply(frame)
            frames.append(frame)
        return frames

    def _apply(self, frame: Frame) -> None:
        message = self.message
        if isinstance(frame, TextDelta):
            message.content += frame.text
        elif isinstance(frame, ToolCallFrame):
            message.add_tool_call(ToolCall(tool_call_id=frame.tool_call_id, tool_name=frame.tool_name, args=frame.args))
        elif isinstance(frame, ToolResultFrame):
            if not message.resolve_tool_call(frame.tool_call_id, frame.result):
                logger.debug({"event": "stream_unknown_tool_result", "tool_call_id": frame.tool_call_id})
        elif frame.text:
            message.content = f"{message.content}\n{frame.text}" if message.content else frame.text


def finalize_message(message: ConversationMessage, locale: str | None) -> ConversationMessage:
    """
    Close out a streamed message: drop tool calls that never resolved and
    replace an empty (or provider-blocked) reply with a localized notice.
    """

    dropped = message.drop_pending_calls()
    if dropped:
        logger.info({"event": "stream_pending_calls_dropped", "message_id": message.id, "count": dropped})
    if message.is_empty() or (_PROVIDER_EMPTY_RE.search(message.content) and not message.tool_invocations):
        message.content = notice_text(Notice.EMPTY_RESPONSE, locale)
    return message
