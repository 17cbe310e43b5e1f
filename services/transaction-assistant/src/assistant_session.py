"""
Asyncio driver for the assistant conversation.

`AssistantSession` owns the message log of one user and executes the
orchestrator state machine for each submission:

- local extraction first; candidates go through the quota gate and
  enrichment (smart category lookup, recurring rules) and never reach the
  remote assistant,
- otherwise a remote call bounded by `timeout_seconds`, answered by JSON or a
  framed stream,
- at most one submission in flight; a new `submit` replaces the handle and
  then cancels the previous task, whose late effects are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

import httpx
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from assistant_client import (
    ActionReply,
    AddTransactionPayload,
    AssistantClient,
    AssistantResponseError,
    MessageReply,
    RateLimitedReply,
)
from assistant_models import (
    PROPOSE_TRANSACTION_TOOL,
    Budget,
    ConversationMessage,
    RecurringRule,
    ToolResult,
    TransactionCandidate,
    new_message_id,
    proposal_result,
)
from category_lookup import infer_from_history, lookup_recent_categories
from local_extractor import parse, relative_date
from locales import Notice, looks_like_transaction, notice_text, resolve_locale
from orchestrator import (
    Aborted,
    AppendMessage,
    ClearInFlight,
    DiscardStreamingMessage,
    Done,
    Effect,
    EmitNotice,
    Enrich,
    Enriched,
    Event,
    Failed,
    FinalizeStreamingMessage,
    Idle,
    LocalParsed,
    Outcome,
    PublishStreamingMessage,
    QuotaCheck,
    QuotaDenied,
    QuotaGranted,
    RateLimited,
    ReplyReceived,
    StartCooldown,
    State,
    StreamFinished,
    StreamOpened,
    Submitted,
    TimedOut,
    transition,
)
from persistence import BUDGET_FOLDERS_TABLE, RECURRING_RULES_TABLE, PersistenceError, TransactionStore
from quota_client import QuotaCheckError, QuotaClient
from recurring_rules import autofill_from_rules, rules_from_rows
from shared.observability import current_request_id, describe_text, get_tracer, new_request_id
from stream_decoder import StreamDecoder, finalize_message

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 45.0
DEFAULT_COOLDOWN_SECONDS = 3.0
MAX_COOLDOWN_SECONDS = 3600.0
QUOTA_REQUEST_TYPE = "action"

# Failures that end a submission with a localized notice instead of an exception.
TRANSPORT_ERRORS = (httpx.HTTPError, AssistantResponseError, QuotaCheckError)


@dataclass
class _Submission:
    generation: int
    text: str
    request_id: str
    state: State = field(default_factory=Idle)


class AssistantSession:
    def __init__(
        self,
        *,
        user_id: str,
        token: str,
        quota: QuotaClient,
        assistant: AssistantClient,
        store: TransactionStore,
        locale: str | None = None,
        tone: str = "neutral",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        default_cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.user_id = user_id
        self.token = token
        self.locale = resolve_locale(locale)
        self.tone = tone
        self.timeout_seconds = timeout_seconds
        self.default_cooldown_seconds = default_cooldown_seconds
        self.messages: list[ConversationMessage] = []
        self.rate_limited_until: float | None = None

        self._quota = quota
        self._assistant = assistant
        self._store = store
        self._clock = clock
        self._today = today
        self._generation = 0
        self._in_flight: asyncio.Task[Outcome] | None = None
        self._rules: list[RecurringRule] | None = None
        self._budgets: list[Budget] = []

    @property
    def is_loading(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def is_rate_limited(self) -> bool:
        return self.rate_limited_until is not None and self._clock() < self.rate_limited_until

    @property
    def cooldown_remaining(self) -> float:
        if not self.is_rate_limited:
            return 0.0
        return max(0.0, self.rate_limited_until - self._clock())

    @property
    def budgets(self) -> list[Budget]:
        return list(self._budgets)

    async def submit(self, text: str) -> Outcome:
        """Send one user message and wait for its outcome.

        Returns `Outcome.ABORTED` when a later submission or `stop()`
        cancelled this one.
        """

        text = (text or "").strip()
        if not text:
            raise ValueError("Message must not be empty")

        self.messages.append(ConversationMessage(role="user", content=text))
        self._generation += 1
        submission = _Submission(
            generation=self._generation,
            text=text,
            request_id=current_request_id() or new_request_id(),
        )

        previous = self._in_flight
        task = asyncio.create_task(self._run(submission))
        self._in_flight = task
        if previous is not None and not previous.done():
            previous.cancel()

        try:
            await asyncio.wait([task])
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            return Outcome.ABORTED
        return task.result()

    def stop(self) -> bool:
        """Abort the in-flight submission without adding a message."""

        task = self._in_flight
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _run(self, submission: _Submission) -> Outcome:
        transaction_like = looks_like_transaction(submission.text)
        logger.info(
            {
                "event": "assistant_submit",
                "request_id": submission.request_id,
                "user_id": self.user_id,
                "generation": submission.generation,
                "locale": self.locale,
                "text": describe_text(submission.text),
            }
        )
        try:
            self._step(submission, Submitted(submission.text))
            result = parse(submission.text, self.locale, today=self._today())
            self._step(submission, LocalParsed(tuple(result.transactions)))

            if isinstance(submission.state, QuotaCheck):
                await self._run_local(submission)
            else:
                async with asyncio.timeout(self.timeout_seconds):
                    await self._run_remote(submission)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning(
                {
                    "event": "assistant_timeout",
                    "request_id": submission.request_id,
                    "timeout_seconds": self.timeout_seconds,
                }
            )
            self._finish(submission, TimedOut(transaction_like))
        except asyncio.CancelledError:
            logger.info({"event": "assistant_aborted", "request_id": submission.request_id})
            self._finish(submission, Aborted())
            raise
        except TRANSPORT_ERRORS as exc:
            logger.warning(
                {"event": "assistant_failed", "request_id": submission.request_id, "error": str(exc)},
                exc_info=exc,
            )
            self._finish(submission, Failed(transaction_like, str(exc)))
        finally:
            if self._in_flight is asyncio.current_task():
                self._in_flight = None

        if not isinstance(submission.state, Done):
            raise RuntimeError(f"Submission ended in non-terminal state {submission.state!r}")
        logger.info(
            {
                "event": "assistant_done",
                "request_id": submission.request_id,
                "outcome": submission.state.outcome.value,
            }
        )
        return submission.state.outcome

    async def _run_local(self, submission: _Submission) -> None:
        decision = await self._quota.consume(
            token=self.token,
            request_type=QUOTA_REQUEST_TYPE,
            prompt_chars=len(submission.text),
            request_id=submission.request_id,
        )
        if not decision.allowed:
            self._step(submission, QuotaDenied(decision.retry_after))
            return

        self._step(submission, QuotaGranted())
        state = submission.state
        if not isinstance(state, Enrich):
            raise RuntimeError(f"Quota grant led to {state!r} instead of enrichment")
        candidates = list(state.candidates)
        self._step(submission, Enriched(await self._proposal_message(candidates, "local")))

    async def _run_remote(self, submission: _Submission) -> None:
        tracer = get_tracer()
        with tracer.start_as_current_span("assistant.remote_call") as span:
            span.set_attribute("assistant.locale", self.locale)
            span.set_attribute("assistant.request_id", submission.request_id)
            try:
                async with self._assistant.send(
                    token=self.token,
                    user_id=self.user_id,
                    message=submission.text,
                    tone=self.tone,
                    locale=self.locale,
                    request_id=submission.request_id,
                ) as reply:
                    if isinstance(reply, RateLimitedReply):
                        span.set_attribute("assistant.status_code", reply.status_code)
                        self._step(submission, RateLimited(reply.retry_after))
                    elif isinstance(reply, (ActionReply, MessageReply)):
                        self._step(submission, ReplyReceived(self._message_from_reply(reply, submission.text)))
                    else:
                        decoder = StreamDecoder()
                        self._step(submission, StreamOpened(decoder.message))
                        async for chunk in reply.chunks:
                            decoder.feed(chunk)
                        decoder.close()
                        self._step(submission, StreamFinished())
            except TRANSPORT_ERRORS as exc:
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise

    async def _proposal_message(self, candidates: list[TransactionCandidate], prefix: str) -> ConversationMessage:
        # Enrichment is best-effort: any failure falls back to the parsed candidates.
        try:
            history = await lookup_recent_categories(self._store, self.user_id)
            candidates = infer_from_history(candidates, history)
        except Exception as exc:
            logger.warning({"event": "category_lookup_failed", "user_id": self.user_id, "error": str(exc)}, exc_info=exc)

        autofilled = []
        try:
            rules = await self._load_rules()
            candidates, autofilled = autofill_from_rules(candidates, rules, self._budgets)
        except PersistenceError as exc:
            logger.warning({"event": "recurring_rules_unavailable", "user_id": self.user_id, "error": str(exc)})
        except Exception as exc:
            logger.warning({"event": "recurring_rules_failed", "user_id": self.user_id, "error": str(exc)}, exc_info=exc)

        return _proposal_message(candidates, prefix, autofilled=autofilled)

    async def _load_rules(self) -> list[RecurringRule]:
        if self._rules is None:
            rule_rows = await self._store.select(RECURRING_RULES_TABLE, filters={"user_id": self.user_id})
            budget_rows = await self._store.select(BUDGET_FOLDERS_TABLE, filters={"user_id": self.user_id})
            self._budgets = [
                Budget(
                    id=str(row["id"]),
                    name=str(row.get("name") or ""),
                    type="income" if row.get("type") == "income" else "expense",
                    emoji=row.get("emoji"),
                )
                for row in budget_rows
                if row.get("id") is not None
            ]
            self._rules = rules_from_rows(rule_rows)
            logger.info({"event": "recurring_rules_loaded", "user_id": self.user_id, "count": len(self._rules)})
        return self._rules

    def _message_from_reply(self, reply: ActionReply | MessageReply, text: str) -> ConversationMessage:
        if isinstance(reply, MessageReply):
            return ConversationMessage(role="assistant", content=reply.message)

        if reply.action.type != "add_transaction":
            content = reply.confirm_text or notice_text(Notice.EMPTY_RESPONSE, self.locale)
            return ConversationMessage(role="assistant", content=content)

        today = self._today()
        try:
            payload = AddTransactionPayload.model_validate(reply.action.payload)
            when = relative_date(text, self.locale, today=today)
            candidate = TransactionCandidate(
                title=payload.title.strip(),
                amount=round(payload.amount, 2),
                type="expense",
                category_name=payload.budget_name,
                date=when.isoformat() if when else payload.date or today.isoformat(),
            )
        except (ValidationError, ValueError) as exc:
            raise AssistantResponseError(f"Invalid add_transaction payload: {exc}") from exc
        return _proposal_message([candidate], "assistant")

    def _step(self, submission: _Submission, event: Event) -> None:
        submission.state, effects = transition(submission.state, event)
        if submission.generation == self._generation:
            for effect in effects:
                self._apply(effect)
            return

        # Superseded: only tidy up the message this submission left in the log.
        for effect in effects:
            if isinstance(effect, DiscardStreamingMessage):
                self._discard(effect.message)
        logger.info(
            {
                "event": "assistant_stale_effects_dropped",
                "request_id": submission.request_id,
                "generation": submission.generation,
                "current_generation": self._generation,
            }
        )

    def _finish(self, submission: _Submission, event: Event) -> None:
        # A terminal event can race with the last await of a finished submission.
        if not isinstance(submission.state, Done):
            self._step(submission, event)

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, (AppendMessage, PublishStreamingMessage)):
            self.messages.append(effect.message)
        elif isinstance(effect, FinalizeStreamingMessage):
            finalize_message(effect.message, self.locale)
        elif isinstance(effect, DiscardStreamingMessage):
            self._discard(effect.message)
        elif isinstance(effect, EmitNotice):
            content = notice_text(effect.notice, self.locale, retry_after=effect.retry_after)
            self.messages.append(ConversationMessage(role="assistant", content=content))
        elif isinstance(effect, StartCooldown):
            seconds = effect.seconds if effect.seconds and effect.seconds > 0 else self.default_cooldown_seconds
            seconds = min(seconds, MAX_COOLDOWN_SECONDS)
            self.rate_limited_until = self._clock() + seconds
        elif isinstance(effect, ClearInFlight):
            if self._in_flight is asyncio.current_task():
                self._in_flight = None

    def _discard(self, message: ConversationMessage) -> None:
        message.drop_pending_calls()
        if message.is_empty() and message in self.messages:
            self.messages.remove(message)


def _proposal_message(
    candidates: list[TransactionCandidate],
    prefix: str,
    *,
    autofilled: list[dict] | None = None,
) -> ConversationMessage:
    message = ConversationMessage(role="assistant")
    result = proposal_result(candidates, autofilled=autofilled)
    message.add_tool_result(
        ToolResult(
            tool_call_id=new_message_id(prefix),
            tool_name=PROPOSE_TRANSACTION_TOOL,
            args={"transactions": result["transactions"]},
            result=result,
        )
    )
    return message
