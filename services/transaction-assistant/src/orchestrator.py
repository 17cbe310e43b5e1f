"""
Pure state machine behind a single assistant submission.

`transition(state, event)` returns the next state plus the effects the driver
must perform; it never touches I/O. The table:

    Idle          --Submitted-->        LocalExtract
    LocalExtract  --LocalParsed(c)-->   QuotaCheck(c)   (candidates found)
    LocalExtract  --LocalParsed([])-->  RemoteCall
    QuotaCheck    --QuotaGranted-->     Enrich
    QuotaCheck    --QuotaDenied-->      Done(rate_limited)
    Enrich        --Enriched-->         Done(completed)
    RemoteCall    --ReplyReceived-->    Done(completed)
    RemoteCall    --StreamOpened-->     Streaming
    Streaming     --StreamFinished-->   Done(completed)
    RemoteCall    --RateLimited-->      Done(rate_limited)
    any active    --Failed-->           Done(failed)
    any active    --TimedOut-->         Done(timed_out)
    any active    --Aborted-->          Done(aborted)

Every transition into Done carries `ClearInFlight`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from assistant_models import ConversationMessage, TransactionCandidate
from locales import Notice


class Outcome(str, Enum):
    COMPLETED = "completed"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class InvalidTransition(RuntimeError):
    def __init__(self, state: State, event: Event) -> None:
        super().__init__(f"{type(event).__name__} is not valid in state {type(state).__name__}")
        self.state = state
        self.event = event


# States


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class LocalExtract:
    text: str


@dataclass(frozen=True)
class QuotaCheck:
    candidates: tuple[TransactionCandidate, ...]


@dataclass(frozen=True)
class Enrich:
    candidates: tuple[TransactionCandidate, ...]


@dataclass(frozen=True)
class RemoteCall:
    pass


@dataclass(frozen=True)
class Streaming:
    message: ConversationMessage


@dataclass(frozen=True)
class Done:
    outcome: Outcome


State = Union[Idle, LocalExtract, QuotaCheck, Enrich, RemoteCall, Streaming, Done]


# Events


@dataclass(frozen=True)
class Submitted:
    text: str


@dataclass(frozen=True)
class LocalParsed:
    candidates: tuple[TransactionCandidate, ...] = ()


@dataclass(frozen=True)
class QuotaGranted:
    pass


@dataclass(frozen=True)
class QuotaDenied:
    retry_after: float | None = None


@dataclass(frozen=True)
class Enriched:
    message: ConversationMessage


@dataclass(frozen=True)
class ReplyReceived:
    message: ConversationMessage


@dataclass(frozen=True)
class StreamOpened:
    message: ConversationMessage


@dataclass(frozen=True)
class StreamFinished:
    pass


@dataclass(frozen=True)
class RateLimited:
    retry_after: float | None = None


@dataclass(frozen=True)
class Failed:
    transaction_like: bool = False
    error: str | None = None


@dataclass(frozen=True)
class TimedOut:
    transaction_like: bool = False


@dataclass(frozen=True)
class Aborted:
    pass


Event = Union[
    Submitted,
    LocalParsed,
    QuotaGranted,
    QuotaDenied,
    Enriched,
    ReplyReceived,
    StreamOpened,
    StreamFinished,
    RateLimited,
    Failed,
    TimedOut,
    Aborted,
]


# Effects


@dataclass(frozen=True)
class AppendMessage:
    message: ConversationMessage


@dataclass(frozen=True)
class PublishStreamingMessage:
    message: ConversationMessage


@dataclass(frozen=True)
class FinalizeStreamingMessage:
    message: ConversationMessage


@dataclass(frozen=True)
class DiscardStreamingMessage:
    message: ConversationMessage


@dataclass(frozen=True)
class EmitNotice:
    notice: Notice
    retry_after: float | None = None


@dataclass(frozen=True)
class StartCooldown:
    seconds: float | None = None


@dataclass(frozen=True)
class ClearInFlight:
    pass


Effect = Union[
    AppendMessage,
    PublishStreamingMessage,
    FinalizeStreamingMessage,
    DiscardStreamingMessage,
    EmitNotice,
    StartCooldown,
    ClearInFlight,
]

ACTIVE_STATES = (LocalExtract, QuotaCheck, Enrich, RemoteCall, Streaming)


def transition(state: State, event: Event) -> tuple[State, list[Effect]]:
    if isinstance(state, Idle) and isinstance(event, Submitted):
        return LocalExtract(event.text), []

    if isinstance(state, LocalExtract) and isinstance(event, LocalParsed):
        if event.candidates:
            return QuotaCheck(tuple(event.candidates)), []
        return RemoteCall(), []

    if isinstance(state, QuotaCheck):
        if isinstance(event, QuotaGranted):
            return Enrich(state.candidates), []
        if isinstance(event, QuotaDenied):
            return _done(
                Outcome.RATE_LIMITED,
                EmitNotice(Notice.RATE_LIMITED, event.retry_after),
                StartCooldown(event.retry_after),
            )

    if isinstance(state, Enrich) and isinstance(event, Enriched):
        return _done(Outcome.COMPLETED, AppendMessage(event.message))

    if isinstance(state, RemoteCall):
        if isinstance(event, ReplyReceived):
            return _done(Outcome.COMPLETED, AppendMessage(event.message))
        if isinstance(event, StreamOpened):
            return Streaming(event.message), [PublishStreamingMessage(event.message)]
        if isinstance(event, RateLimited):
            return _done(
                Outcome.RATE_LIMITED,
                EmitNotice(Notice.RATE_LIMITED, event.retry_after),
                StartCooldown(event.retry_after),
            )

    if isinstance(state, Streaming) and isinstance(event, StreamFinished):
        return _done(Outcome.COMPLETED, FinalizeStreamingMessage(state.message))

    if isinstance(state, ACTIVE_STATES):
        discard = [DiscardStreamingMessage(state.message)] if isinstance(state, Streaming) else []
        if isinstance(event, Failed):
            notice = Notice.TRANSACTION_FALLBACK if event.transaction_like else Notice.UNAVAILABLE
            return _done(Outcome.FAILED, *discard, EmitNotice(notice))
        if isinstance(event, TimedOut):
            notice = Notice.TIMED_OUT_TRANSACTION if event.transaction_like else Notice.TIMED_OUT
            return _done(Outcome.TIMED_OUT, *discard, EmitNotice(notice))
        if isinstance(event, Aborted):
            return _done(Outcome.ABORTED, *discard)

    raise InvalidTransition(state, event)


def _done(outcome: Outcome, *effects: Effect) -> tuple[State, list[Effect]]:
    return Done(outcome), [*effects, ClearInFlight()]
