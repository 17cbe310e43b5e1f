import asyncio
from datetime import datetime

import pytest
from assistant_models import Budget, TransactionCandidate
from persistence import InMemoryTransactionStore, PersistenceError
from proposal import MISSING_CONTEXT_ERROR, CardState, CardStateError, ProposalCard, select_budget

BUDGETS = [
    Budget(id="b-general", name="General"),
    Budget(id="b-food", name="Food & Drinks"),
    Budget(id="b-car", name="Car"),
]
PROPOSAL = TransactionCandidate(title="Coffee", amount=4.5, category_name="Food", date="2026-10-18")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FailingStore(InMemoryTransactionStore):
    async def insert(self, table, row):
        raise PersistenceError("permission denied for table transactions")


class BrokenStore(InMemoryTransactionStore):
    async def insert(self, table, row):
        raise ValueError("row is not serializable")


class Recorder:
    def __init__(self) -> None:
        self.saved: list[dict] = []
        self.errors: list[str] = []

    def card(self, store, *, proposal=PROPOSAL, budgets=BUDGETS, user_id="user-1", **kwargs) -> ProposalCard:
        return ProposalCard(
            proposal,
            budgets,
            user_id=user_id,
            store=store,
            on_success=self.saved.append,
            on_error=self.errors.append,
            **kwargs,
        )


@pytest.mark.parametrize(
    ("category", "expected"),
    [
        ("Food", "b-food"),
        ("food & drinks", "b-food"),
        ("CAR", "b-car"),
        ("Car rental", "b-car"),
        ("Travel", "b-general"),
        (None, "b-general"),
    ],
)
def test_select_budget_matches_name_or_falls_back_to_first(category, expected) -> None:
    assert select_budget(category, BUDGETS).id == expected


def test_select_budget_without_budgets() -> None:
    assert select_budget("Food", []) is None


@pytest.mark.anyio
async def test_confirm_inserts_transaction_and_reports_success() -> None:
    store = InMemoryTransactionStore()
    recorder = Recorder()
    card = recorder.card(store)

    assert await card.confirm() is True

    assert card.state is CardState.SAVED
    (row,) = store.rows("transactions")
    assert row["user_id"] == "user-1"
    assert (row["title"], row["amount"], row["type"]) == ("Coffee", 4.5, "expense")
    assert row["budget_folder_id"] == "b-food"
    assert datetime.fromisoformat(row["created_at"]).date().isoformat() == "2026-10-18"
    assert recorder.saved == [row]
    assert recorder.errors == []


@pytest.mark.anyio
async def test_saved_state_reverts_to_viewing() -> None:
    card = Recorder().card(InMemoryTransactionStore(), saved_display_seconds=0.01)

    await card.confirm()
    assert card.state is CardState.SAVED
    await asyncio.sleep(0.05)

    assert card.state is CardState.VIEWING


@pytest.mark.anyio
async def test_store_error_is_reported_and_card_returns_to_origin() -> None:
    recorder = Recorder()
    card = recorder.card(FailingStore())
    card.start_editing()

    assert await card.confirm() is False

    assert recorder.errors == ["permission denied for table transactions"]
    assert recorder.saved == []
    assert card.state is CardState.EDITING


@pytest.mark.anyio
async def test_unexpected_store_error_does_not_leave_card_saving() -> None:
    recorder = Recorder()
    card = recorder.card(BrokenStore())

    assert await card.confirm() is False

    assert recorder.errors == ["row is not serializable"]
    assert card.state is CardState.VIEWING
    card.start_editing()
    assert card.state is CardState.EDITING


@pytest.mark.anyio
@pytest.mark.parametrize(("user_id", "budgets"), [(None, BUDGETS), ("user-1", [])])
async def test_missing_user_or_budget_blocks_confirm(user_id, budgets) -> None:
    store = InMemoryTransactionStore()
    recorder = Recorder()
    card = recorder.card(store, user_id=user_id, budgets=budgets)

    assert await card.confirm() is False

    assert recorder.errors == [MISSING_CONTEXT_ERROR]
    assert store.rows("transactions") == []
    assert card.state is CardState.VIEWING


@pytest.mark.anyio
async def test_edits_are_saved_and_category_change_reselects_budget() -> None:
    store = InMemoryTransactionStore()
    card = Recorder().card(store)

    card.start_editing()
    card.update(title="Fuel", amount=60, category_name="Car")
    await card.confirm()

    (row,) = store.rows("transactions")
    assert (row["title"], row["amount"], row["budget_folder_id"]) == ("Fuel", 60, "b-car")


def test_update_requires_editing_and_known_fields() -> None:
    card = Recorder().card(InMemoryTransactionStore())

    with pytest.raises(CardStateError):
        card.update(title="Tea")

    card.start_editing()
    with pytest.raises(ValueError):
        card.update(user_id="someone-else")
    with pytest.raises(ValueError):
        card.update(amount=0)


def test_manual_budget_selection() -> None:
    card = Recorder().card(InMemoryTransactionStore())

    assert card.select("b-car").name == "Car"
    with pytest.raises(ValueError):
        card.select("missing")


def test_undo_autofill_restores_previous_values() -> None:
    previous = TransactionCandidate(title="Netflix", amount=20, category_name="Car", date="2026-10-18")
    autofilled = TransactionCandidate(title="Netflix", amount=15.99, category_name="Food", date="2026-10-18")
    card = Recorder().card(InMemoryTransactionStore(), proposal=autofilled, previous=previous)

    assert card.undo_autofill() == previous
    assert card.budget.id == "b-car"
    with pytest.raises(CardStateError):
        card.undo_autofill()
