"""
Domain types shared by the extractor, the stream decoder, the session driver,
and the proposal card.

Wire payloads (tool-call results, JSON replies) are validated with pydantic at
the boundary and converted into these dataclasses; everything past the
boundary works with typed values only.
"""

from __future__ import annotations

import itertools
import logging
import math
import time
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

TransactionType = Literal["expense", "income"]
Cadence = Literal["weekly", "monthly"]
Role = Literal["user", "assistant"]

PROPOSE_TRANSACTION_TOOL = "propose_transaction"

_message_counter = itertools.count(1)


def new_message_id(prefix: str = "msg") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{next(_message_counter)}"


@dataclass(frozen=True)
class TransactionCandidate:
    """A provisional, unconfirmed transaction. Amount is always positive."""

    title: str
    amount: float
    type: TransactionType = "expense"
    category_name: str | None = None
    date: str = field(default_factory=lambda: date.today().isoformat())

    def __post_init__(self) -> None:
        if not math.isfinite(self.amount) or self.amount <= 0:
            raise ValueError(f"amount must be a positive number (received {self.amount!r})")
        if self.type not in ("expense", "income"):
            raise ValueError(f"unsupported transaction type {self.type!r}")
        date.fromisoformat(self.date)

    def with_category(self, category_name: str | None) -> TransactionCandidate:
        return replace(self, category_name=category_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "amount": self.amount,
            "type": self.type,
            "category_name": self.category_name,
            "date": self.date,
        }


@dataclass(frozen=True)
class Budget:
    id: str
    name: str
    type: TransactionType = "expense"
    emoji: str | None = None


@dataclass(frozen=True)
class RecurringRule:
    title_pattern: str
    budget_folder_id: str | None
    avg_amount: float
    cadence: Cadence
    next_due_date: str
    active: bool = True


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation announced by the model whose result has not arrived."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)

    state: Literal["call"] = field(default="call", init=False)

    def resolve(self, result: Any) -> ToolResult:
        return ToolResult(
            tool_call_id=self.tool_call_id,
            tool_name=self.tool_name,
            args=self.args,
            result=result,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
            "state": self.state,
        }


@dataclass(frozen=True)
class ToolResult:
    """A completed tool invocation. There is no way back to `ToolCall`."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    result: Any

    state: Literal["result"] = field(default="result", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
            "state": self.state,
            "result": self.result,
        }


ToolInvocation = Union[ToolCall, ToolResult]


@dataclass
class ConversationMessage:
    role: Role
    content: str = ""
    id: str = field(default_factory=new_message_id)
    _invocations: dict[str, ToolInvocation] = field(default_factory=dict, repr=False)

    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        return list(self._invocations.values())

    def add_tool_call(self, call: ToolCall) -> bool:
        if call.tool_call_id in self._invocations:
            logger.debug({"event": "duplicate_tool_call", "tool_call_id": call.tool_call_id})
            return False
        self._invocations[call.tool_call_id] = call
        return True

    def add_tool_result(self, result: ToolResult) -> None:
        self._invocations[result.tool_call_id] = result

    def resolve_tool_call(self, tool_call_id: str, result: Any) -> bool:
        """Move a pending call to the result state. Unknown or finished ids are ignored."""

        invocation = self._invocations.get(tool_call_id)
        if not isinstance(invocation, ToolCall):
            return False
        self._invocations[tool_call_id] = invocation.resolve(result)
        return True

    def drop_pending_calls(self) -> int:
        pending = [key for key, value in self._invocations.items() if isinstance(value, ToolCall)]
        for key in pending:
            del self._invocations[key]
        return len(pending)

    def is_empty(self) -> bool:
        return not self.content.strip() and not self._invocations

    def proposals(self) -> list[TransactionCandidate]:
        """Candidates carried by completed `propose_transaction` invocations."""

        candidates: list[TransactionCandidate] = []
        for invocation in self._invocations.values():
            if isinstance(invocation, ToolResult) and invocation.tool_name == PROPOSE_TRANSACTION_TOOL:
                candidates.extend(candidates_from_result(invocation.result))
        return candidates

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "role": self.role, "content": self.content}
        if self._invocations:
            payload["toolInvocations"] = [item.to_dict() for item in self._invocations.values()]
        return payload


class ProposedTransactionPayload(BaseModel):
    title: str = Field(min_length=1)
    amount: float = Field(gt=0, allow_inf_nan=False)
    type: TransactionType = "expense"
    category_name: str | None = None
    date: str | None = None


class ProposalResultPayload(BaseModel):
    success: bool = True
    transactions: list[dict[str, Any]] = Field(default_factory=list)


def candidate_from_payload(payload: Any, *, default_date: str | None = None) -> TransactionCandidate | None:
    try:
        parsed = ProposedTransactionPayload.model_validate(payload)
        return TransactionCandidate(
            title=parsed.title.strip(),
            amount=round(parsed.amount, 2),
            type=parsed.type,
            category_name=parsed.category_name,
            date=parsed.date or default_date or date.today().isoformat(),
        )
    except (ValidationError, ValueError) as exc:
        logger.warning({"event": "proposal_rejected", "error": str(exc)})
        return None


def candidates_from_result(result: Any) -> list[TransactionCandidate]:
    """Convert a `propose_transaction` result into candidates, skipping invalid entries."""

    try:
        parsed = ProposalResultPayload.model_validate(result)
    except ValidationError:
        return []
    if not parsed.success:
        return []
    candidates = (candidate_from_payload(item) for item in parsed.transactions)
    return [candidate for candidate in candidates if candidate is not None]


def proposal_result(
    candidates: list[TransactionCandidate],
    *,
    autofilled: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    result: dict[str, Any] = {
        "success": True,
        "transactions": [candidate.to_dict() for candidate in candidates],
    }
    if autofilled:
        result["autofilled"] = autofilled
    return result
