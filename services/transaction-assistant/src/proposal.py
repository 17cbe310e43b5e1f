"""
Confirmation flow for one proposed transaction.

A `ProposalCard` moves through viewing -> (editing) -> saving -> saved and
back to viewing; a failed save reports the store's message through
`on_error` and returns the card to the state it was confirmed from.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from assistant_models import Budget, TransactionCandidate
from persistence import TRANSACTIONS_TABLE, PersistenceError, TransactionStore

logger = logging.getLogger(__name__)

MISSING_CONTEXT_ERROR = "Missing user or budget information"
EDITABLE_FIELDS = frozenset({"title", "amount", "type", "category_name", "date"})


class CardState(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"


class CardStateError(RuntimeError):
    """An operation was attempted in a state that does not allow it."""


def select_budget(category_name: str | None, budgets: Sequence[Budget]) -> Budget | None:
    """Case-insensitive equal-or-contains match on the budget name, else the first budget."""

    if not budgets:
        return None
    wanted = (category_name or "").strip().lower()
    if wanted:
        for budget in budgets:
            name = budget.name.strip().lower()
            if name and (name == wanted or wanted in name or name in wanted):
                return budget
    return budgets[0]


class ProposalCard:
    def __init__(
        self,
        proposal: TransactionCandidate,
        budgets: Sequence[Budget],
        *,
        user_id: str | None,
        store: TransactionStore,
        on_success: Callable[[dict[str, Any]], None],
        on_error: Callable[[str], None],
        previous: TransactionCandidate | None = None,
        saved_display_seconds: float = 3.0,
    ) -> None:
        self.proposal = proposal
        self.budgets = list(budgets)
        self.budget = select_budget(proposal.category_name, self.budgets)
        self.state = CardState.VIEWING
        self.previous = previous

        self._user_id = user_id
        self._store = store
        self._on_success = on_success
        self._on_error = on_error
        self._saved_display_seconds = saved_display_seconds
        self._revert_handle: asyncio.TimerHandle | None = None

    def start_editing(self) -> None:
        self._ensure_not_saving()
        self.state = CardState.EDITING

    def stop_editing(self) -> None:
        self._ensure_not_saving()
        self.state = CardState.VIEWING

    def update(self, **changes: Any) -> TransactionCandidate:
        if self.state is not CardState.EDITING:
            raise CardStateError("Proposal can only be changed while editing")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown proposal fields: {', '.join(sorted(unknown))}")
        self.proposal = replace(self.proposal, **changes)
        if "category_name" in changes:
            self.budget = select_budget(self.proposal.category_name, self.budgets)
        return self.proposal

    def select(self, budget_id: str) -> Budget:
        self._ensure_not_saving()
        budget = next((item for item in self.budgets if item.id == budget_id), None)
        if budget is None:
            raise ValueError(f"Unknown budget: {budget_id}")
        self.budget = budget
        return budget

    def undo_autofill(self) -> TransactionCandidate:
        """Restore the values entered before a recurring rule filled them in."""

        self._ensure_not_saving()
        if self.previous is None:
            raise CardStateError("Nothing to undo")
        self.proposal, self.previous = self.previous, None
        self.budget = select_budget(self.proposal.category_name, self.budgets)
        return self.proposal

    async def confirm(self) -> bool:
        if self.state not in (CardState.VIEWING, CardState.EDITING):
            raise CardStateError(f"Cannot confirm while {self.state.value}")
        if not self._user_id or self.budget is None:
            self._on_error(MISSING_CONTEXT_ERROR)
            return False

        origin = self.state
        self.state = CardState.SAVING
        row = {
            "user_id": self._user_id,
            "title": self.proposal.title,
            "amount": self.proposal.amount,
            "type": self.proposal.type,
            "budget_folder_id": self.budget.id,
            "created_at": _created_at(self.proposal.date),
        }
        try:
            saved = await self._store.insert(TRANSACTIONS_TABLE, row)
        except Exception as exc:
            # Any store failure, expected or not, must leave the saving state.
            self.state = CardState.FAILED
            logger.warning(
                {"event": "proposal_save_failed", "user_id": self._user_id, "error": str(exc)},
                exc_info=None if isinstance(exc, PersistenceError) else exc,
            )
            self._on_error(str(exc) or type(exc).__name__)
            self.state = origin
            return False

        self.state = CardState.SAVED
        logger.info({"event": "proposal_saved", "user_id": self._user_id, "budget_folder_id": self.budget.id})
        self._on_success(saved)
        self._revert_handle = asyncio.get_running_loop().call_later(self._saved_display_seconds, self._revert)
        return True

    def _revert(self) -> None:
        self._revert_handle = None
        if self.state is CardState.SAVED:
            self.state = CardState.VIEWING

    def _ensure_not_saving(self) -> None:
        if self.state is CardState.SAVING:
            raise CardStateError("Proposal is being saved")


def _created_at(day: str) -> str:
    # Date-only proposals are stored at the current time of day on that date.
    now = datetime.now(timezone.utc)
    picked = datetime.fromisoformat(day)
    return now.replace(year=picked.year, month=picked.month, day=picked.day).isoformat()
