"""
Recurring-expense rules: title normalization, rule matching, reversible
auto-fill, and detection of recurring patterns in transaction history.

Matching policy:
- Titles and rule patterns go through the same `normalize_title`, so
  "Netflix #4821" and "netflix" compare equal.
- Equality only, no fuzzy matching; the first active rule in inbound order wins.
- An auto-fill keeps the manually entered candidate so it can be restored verbatim.
"""

from __future__ import annotations

import logging
import math
import re
import statistics
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any

from assistant_models import Budget, Cadence, RecurringRule, TransactionCandidate

logger = logging.getLogger(__name__)

_EMOJI_RE = re.compile("[\U0001F300-\U0001FAFF\u2600-\u27BF\uFE0F]")
_PUNCTUATION_RE = re.compile(r"[^\w\s]|_")
_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_TOKEN_RE = re.compile(r"(?:^|\s)[#*]?\d{3,}\b")

MIN_OCCURRENCES = 3
MAX_CANDIDATES = 20
WEEKLY_GAP_DAYS = (5, 9)
MONTHLY_GAP_DAYS = (25, 35)


def normalize_title(raw: str | None) -> str:
    lowered = (raw or "").lower()
    stripped = _EMOJI_RE.sub("", lowered)
    stripped = _PUNCTUATION_RE.sub(" ", stripped)
    stripped = _WHITESPACE_RE.sub(" ", stripped).strip()
    # Receipt and invoice numbers such as "#1234" or "*5678".
    return _WHITESPACE_RE.sub(" ", _NUMBER_TOKEN_RE.sub("", stripped)).strip()


def find_match(normalized_title: str, rules: Iterable[RecurringRule]) -> RecurringRule | None:
    title = normalize_title(normalized_title)
    if not title:
        return None
    for rule in rules:
        if rule.active and rule.avg_amount > 0 and normalize_title(rule.title_pattern) == title:
            return rule
    return None


@dataclass(frozen=True)
class RuleAutofill:
    """A candidate overwritten by a recurring rule, plus what it replaced."""

    rule: RecurringRule
    candidate: TransactionCandidate
    previous: TransactionCandidate

    def undo(self) -> TransactionCandidate:
        return self.previous

    def to_dict(self) -> dict[str, Any]:
        return {
            "title_pattern": self.rule.title_pattern,
            "budget_folder_id": self.rule.budget_folder_id,
            "previous": self.previous.to_dict(),
        }


def apply_rule(
    candidate: TransactionCandidate,
    rule: RecurringRule,
    budgets: Sequence[Budget] = (),
) -> RuleAutofill:
    budget_name = next((budget.name for budget in budgets if budget.id == rule.budget_folder_id), None)
    filled = replace(
        candidate,
        amount=round(rule.avg_amount, 2),
        type="expense",
        category_name=budget_name or candidate.category_name,
    )
    return RuleAutofill(rule=rule, candidate=filled, previous=candidate)


def autofill_from_rules(
    candidates: Sequence[TransactionCandidate],
    rules: Sequence[RecurringRule],
    budgets: Sequence[Budget] = (),
) -> tuple[list[TransactionCandidate], list[dict[str, Any]]]:
    """Apply the first matching rule to each candidate.

    Returns the resulting candidates plus one entry per auto-filled index
    carrying the previous values, ready to embed in a proposal result.
    """

    results: list[TransactionCandidate] = []
    autofilled: list[dict[str, Any]] = []
    for index, candidate in enumerate(candidates):
        rule = find_match(normalize_title(candidate.title), rules)
        if rule is None:
            results.append(candidate)
            continue
        autofill = apply_rule(candidate, rule, budgets)
        results.append(autofill.candidate)
        autofilled.append({"index": index, **autofill.to_dict()})
    return results, autofilled


def rule_from_row(row: Mapping[str, Any]) -> RecurringRule:
    """Build a rule from a `recurring_rules` row; raises ValueError when the amount is unusable."""

    raw_amount = row.get("avg_amount")
    try:
        avg_amount = float(raw_amount)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid avg_amount {raw_amount!r}") from exc
    if not math.isfinite(avg_amount) or round(avg_amount, 2) <= 0:
        raise ValueError(f"avg_amount must be a positive number (received {raw_amount!r})")

    return RecurringRule(
        title_pattern=str(row.get("title_pattern") or ""),
        budget_folder_id=row.get("budget_folder_id"),
        avg_amount=avg_amount,
        cadence="weekly" if row.get("cadence") == "weekly" else "monthly",
        next_due_date=str(row.get("next_due_date") or ""),
        active=bool(row.get("active", True)),
    )


def rules_from_rows(rows: Iterable[Mapping[str, Any]]) -> list[RecurringRule]:
    """Convert store rows into rules, skipping rows that cannot be applied."""

    rules: list[RecurringRule] = []
    for row in rows:
        try:
            rules.append(rule_from_row(row))
        except ValueError as exc:
            logger.warning({"event": "recurring_rule_skipped", "rule_id": row.get("id"), "error": str(exc)})
    return rules


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecurringCandidate:
    title_pattern: str
    budget_folder_id: str | None
    avg_amount: float
    cadence: Cadence
    next_due_date: str
    count: int


def find_recurring_candidates(
    transactions: Iterable[Mapping[str, Any]],
    window_days: int = 120,
    *,
    today: date | None = None,
) -> list[RecurringCandidate]:
    """
    Detect repeating expenses in transaction history.

    Expenses inside the lookback window (clamped to 90..180 days) are grouped
    by normalized title. A group needs at least three occurrences and a
    median gap of roughly a week or a month; its amount is the median, its
    budget folder the most common one.
    """

    today = today or date.today()
    window_start = today - timedelta(days=max(90, min(window_days, 180)))

    groups: dict[str, list[tuple[date, Mapping[str, Any]]]] = {}
    for row in transactions:
        if row.get("type") != "expense":
            continue
        occurred = _row_date(row.get("created_at"))
        if occurred is None or not (window_start <= occurred <= today):
            continue
        key = normalize_title(row.get("title"))
        if key:
            groups.setdefault(key, []).append((occurred, row))

    candidates: list[RecurringCandidate] = []
    for key, group in groups.items():
        if len(group) < MIN_OCCURRENCES:
            continue
        dates = sorted(occurred for occurred, _ in group)
        cadence = detect_cadence(dates)
        if cadence is None:
            continue

        amounts = [float(row["amount"]) for _, row in group if _is_number(row.get("amount"))]
        folders = Counter(row.get("budget_folder_id") for _, row in group)
        step = 7 if cadence == "weekly" else 30
        candidates.append(
            RecurringCandidate(
                title_pattern=key,
                budget_folder_id=folders.most_common(1)[0][0],
                avg_amount=statistics.median(amounts) if amounts else 0.0,
                cadence=cadence,
                next_due_date=(dates[-1] + timedelta(days=step)).isoformat(),
                count=len(group),
            )
        )

    candidates.sort(key=lambda candidate: candidate.avg_amount, reverse=True)
    return candidates[:MAX_CANDIDATES]


def detect_cadence(dates: Sequence[date]) -> Cadence | None:
    if len(dates) < MIN_OCCURRENCES:
        return None
    ordered = sorted(dates)
    gaps = [(later - earlier).days for earlier, later in zip(ordered, ordered[1:])]
    median_gap = statistics.median(gaps)
    if WEEKLY_GAP_DAYS[0] <= median_gap <= WEEKLY_GAP_DAYS[1]:
        return "weekly"
    if MONTHLY_GAP_DAYS[0] <= median_gap <= MONTHLY_GAP_DAYS[1]:
        return "monthly"
    return None


def _row_date(raw: Any) -> date | None:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw)).date()
    except ValueError:
        return None


def _is_number(value: Any) -> bool:
    try:
        return float(value) == float(value)
    except (TypeError, ValueError):
        return False
