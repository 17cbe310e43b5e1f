import pytest
from assistant_models import ConversationMessage, TransactionCandidate
from locales import Notice
from orchestrator import (
    Aborted,
    AppendMessage,
    ClearInFlight,
    DiscardStreamingMessage,
    Done,
    EmitNotice,
    Enrich,
    Enriched,
    Failed,
    FinalizeStreamingMessage,
    Idle,
    InvalidTransition,
    LocalExtract,
    LocalParsed,
    Outcome,
    PublishStreamingMessage,
    QuotaCheck,
    QuotaDenied,
    QuotaGranted,
    RateLimited,
    RemoteCall,
    ReplyReceived,
    StartCooldown,
    StreamFinished,
    StreamOpened,
    Streaming,
    Submitted,
    TimedOut,
    transition,
)

CANDIDATE = TransactionCandidate(title="Gas", amount=500, date="2026-10-18")


def test_local_path_reaches_completed_without_remote_call() -> None:
    message = ConversationMessage(role="assistant")

    state, effects = transition(Idle(), Submitted("Yesterday gas 500"))
    assert state == LocalExtract("Yesterday gas 500") and effects == []

    state, _ = transition(state, LocalParsed((CANDIDATE,)))
    assert state == QuotaCheck((CANDIDATE,))

    state, _ = transition(state, QuotaGranted())
    assert state == Enrich((CANDIDATE,))

    state, effects = transition(state, Enriched(message))
    assert state == Done(Outcome.COMPLETED)
    assert effects == [AppendMessage(message), ClearInFlight()]


def test_no_candidates_goes_remote() -> None:
    state, _ = transition(LocalExtract("hello"), LocalParsed(()))

    assert state == RemoteCall()


def test_quota_denial_emits_notice_and_cooldown() -> None:
    state, effects = transition(QuotaCheck((CANDIDATE,)), QuotaDenied(retry_after=12))

    assert state == Done(Outcome.RATE_LIMITED)
    assert effects == [EmitNotice(Notice.RATE_LIMITED, 12), StartCooldown(12), ClearInFlight()]


def test_streaming_path_publishes_then_finalizes() -> None:
    message = ConversationMessage(role="assistant")

    state, effects = transition(RemoteCall(), StreamOpened(message))
    assert state == Streaming(message)
    assert effects == [PublishStreamingMessage(message)]

    state, effects = transition(state, StreamFinished())
    assert state == Done(Outcome.COMPLETED)
    assert effects == [FinalizeStreamingMessage(message), ClearInFlight()]


def test_reply_and_rate_limit_from_remote() -> None:
    message = ConversationMessage(role="assistant", content="hi")

    assert transition(RemoteCall(), ReplyReceived(message)) == (
        Done(Outcome.COMPLETED),
        [AppendMessage(message), ClearInFlight()],
    )
    assert transition(RemoteCall(), RateLimited(None)) == (
        Done(Outcome.RATE_LIMITED),
        [EmitNotice(Notice.RATE_LIMITED, None), StartCooldown(None), ClearInFlight()],
    )


@pytest.mark.parametrize(
    ("event", "outcome", "notice"),
    [
        (Failed(transaction_like=True), Outcome.FAILED, Notice.TRANSACTION_FALLBACK),
        (Failed(transaction_like=False), Outcome.FAILED, Notice.UNAVAILABLE),
        (TimedOut(transaction_like=True), Outcome.TIMED_OUT, Notice.TIMED_OUT_TRANSACTION),
        (TimedOut(transaction_like=False), Outcome.TIMED_OUT, Notice.TIMED_OUT),
    ],
)
def test_failures_emit_one_notice(event, outcome: Outcome, notice: Notice) -> None:
    state, effects = transition(RemoteCall(), event)

    assert state == Done(outcome)
    assert effects == [EmitNotice(notice), ClearInFlight()]


def test_abort_is_silent_and_discards_partial_stream() -> None:
    message = ConversationMessage(role="assistant")

    state, effects = transition(Streaming(message), Aborted())

    assert state == Done(Outcome.ABORTED)
    assert effects == [DiscardStreamingMessage(message), ClearInFlight()]
    assert not any(isinstance(effect, EmitNotice) for effect in effects)


@pytest.mark.parametrize("state", [LocalExtract("x"), QuotaCheck(()), Enrich(()), RemoteCall()])
def test_every_active_state_can_be_aborted(state) -> None:
    next_state, effects = transition(state, Aborted())

    assert next_state == Done(Outcome.ABORTED)
    assert effects[-1] == ClearInFlight()


@pytest.mark.parametrize(
    ("state", "event"),
    [
        (Idle(), QuotaGranted()),
        (Done(Outcome.COMPLETED), Aborted()),
        (RemoteCall(), QuotaGranted()),
        (QuotaCheck(()), StreamFinished()),
        (Idle(), Aborted()),
    ],
)
def test_invalid_transitions_raise(state, event) -> None:
    with pytest.raises(InvalidTransition):
        transition(state, event)
