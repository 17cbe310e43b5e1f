from datetime import date

import pytest
from assistant_models import Budget, RecurringRule, TransactionCandidate
from recurring_rules import (
    apply_rule,
    autofill_from_rules,
    detect_cadence,
    find_match,
    find_recurring_candidates,
    normalize_title,
    rule_from_row,
    rules_from_rows,
)

TODAY = date(2026, 10, 19)
BUDGETS = [Budget(id="b-food", name="Food"), Budget(id="b-subs", name="Subscriptions")]


def _rule(pattern: str, *, budget: str | None = "b-subs", amount: float = 15.99, active: bool = True) -> RecurringRule:
    return RecurringRule(
        title_pattern=pattern,
        budget_folder_id=budget,
        avg_amount=amount,
        cadence="monthly",
        next_due_date="2026-11-05",
        active=active,
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Netflix #4821", "netflix"),
        ("🎬 Netflix!", "netflix"),
        ("  Spotify   Premium  ", "spotify premium"),
        ("Gym *00123 monthly", "gym monthly"),
        ("Bus 42", "bus 42"),
        ("", ""),
    ],
)
def test_normalize_title(raw: str, expected: str) -> None:
    assert normalize_title(raw) == expected


@pytest.mark.parametrize("raw", ["Netflix #4821", "🎬 Café—Latte!!", "Rent 2026 (Oct)"])
def test_normalize_title_is_idempotent(raw: str) -> None:
    once = normalize_title(raw)
    assert normalize_title(once) == once


def test_match_is_symmetric_between_title_and_pattern() -> None:
    rules = [_rule("Netflix #4821")]

    assert find_match("netflix", rules) is rules[0]
    assert find_match(normalize_title("NETFLIX"), rules) is rules[0]


def test_first_active_rule_wins_and_inactive_rules_are_skipped() -> None:
    inactive = _rule("netflix", budget="b-food", active=False)
    first = _rule("Netflix", budget="b-subs")
    second = _rule("NETFLIX", budget="b-food")

    assert find_match("netflix", [inactive, first, second]) is first


def test_match_requires_equality() -> None:
    rules = [_rule("netflix")]

    assert find_match("netflix premium", rules) is None
    assert find_match("", rules) is None


def test_apply_rule_overrides_amount_and_category_and_undo_restores() -> None:
    manual = TransactionCandidate(title="Netflix", amount=20, category_name="Entertainment", date="2026-10-18")

    autofill = apply_rule(manual, _rule("netflix"), BUDGETS)

    assert autofill.candidate.amount == 15.99
    assert autofill.candidate.category_name == "Subscriptions"
    assert autofill.candidate.type == "expense"
    assert autofill.candidate.date == "2026-10-18"
    assert autofill.undo() == manual


def test_apply_rule_keeps_category_when_budget_is_unknown() -> None:
    manual = TransactionCandidate(title="Netflix", amount=20, category_name="Entertainment")

    autofill = apply_rule(manual, _rule("netflix", budget="missing"), BUDGETS)

    assert autofill.candidate.category_name == "Entertainment"


def test_autofill_reports_previous_values_per_index() -> None:
    candidates = [
        TransactionCandidate(title="Coffee", amount=5),
        TransactionCandidate(title="Netflix", amount=20),
    ]

    results, autofilled = autofill_from_rules(candidates, [_rule("netflix")], BUDGETS)

    assert results[0] == candidates[0]
    assert results[1].amount == 15.99
    assert autofilled == [
        {
            "index": 1,
            "title_pattern": "netflix",
            "budget_folder_id": "b-subs",
            "previous": candidates[1].to_dict(),
        }
    ]


def test_rule_from_row_defaults() -> None:
    rule = rule_from_row({"title_pattern": "gym", "avg_amount": "30", "cadence": "weekly"})

    assert rule.avg_amount == 30.0
    assert rule.cadence == "weekly"
    assert rule.active is True
    assert rule.budget_folder_id is None


@pytest.mark.parametrize("amount", [None, 0, "0.001", "-5", "abc", "nan", "inf"])
def test_rule_from_row_rejects_unusable_amounts(amount) -> None:
    with pytest.raises(ValueError):
        rule_from_row({"title_pattern": "gym", "avg_amount": amount})


def test_rules_from_rows_skips_unusable_rows() -> None:
    rows = [
        {"id": "r1", "title_pattern": "netflix", "avg_amount": None},
        {"id": "r2", "title_pattern": "spotify", "avg_amount": 9.99},
        {"id": "r3", "title_pattern": "gym", "avg_amount": "abc"},
    ]

    assert [rule.title_pattern for rule in rules_from_rows(rows)] == ["spotify"]


def test_match_ignores_rules_without_a_positive_amount() -> None:
    assert find_match("netflix", [_rule("Netflix", amount=0)]) is None


def _tx(title: str, amount: float, created_at: str, *, tx_type: str = "expense", folder: str | None = "b-subs") -> dict:
    return {"title": title, "amount": amount, "type": tx_type, "budget_folder_id": folder, "created_at": created_at}


def test_find_recurring_candidates_detects_weekly_and_monthly() -> None:
    history = [
        _tx("Netflix #1001", 15.99, "2026-07-05T10:00:00+00:00"),
        _tx("Netflix #1002", 15.99, "2026-08-05T10:00:00+00:00"),
        _tx("Netflix", 15.99, "2026-09-05T10:00:00+00:00"),
        _tx("netflix", 17.99, "2026-10-05T10:00:00+00:00"),
        _tx("Coffee", 4.5, "2026-09-28T08:00:00+00:00", folder="b-food"),
        _tx("Coffee", 4.5, "2026-10-05T08:00:00+00:00", folder="b-food"),
        _tx("Coffee", 5.0, "2026-10-12T08:00:00+00:00", folder="b-food"),
        _tx("Salary", 3000, "2026-08-01", tx_type="income"),
        _tx("Salary", 3000, "2026-09-01", tx_type="income"),
        _tx("Salary", 3000, "2026-10-01", tx_type="income"),
    ]

    candidates = find_recurring_candidates(history, today=TODAY)

    assert [c.title_pattern for c in candidates] == ["netflix", "coffee"]
    netflix, coffee = candidates
    assert netflix.cadence == "monthly"
    assert netflix.avg_amount == 15.99
    assert netflix.next_due_date == "2026-11-04"
    assert netflix.count == 4
    assert coffee.cadence == "weekly"
    assert coffee.avg_amount == 4.5
    assert coffee.budget_folder_id == "b-food"
    assert coffee.next_due_date == "2026-10-19"


def test_find_recurring_candidates_clamps_window_and_skips_sparse_groups() -> None:
    history = [
        # 100 days back: outside the clamped 90-day window.
        _tx("Gym", 30, "2026-07-11"),
        _tx("Gym", 30, "2026-08-10"),
        _tx("Gym", 30, "2026-09-09"),
        _tx("Gym", 30, "2026-10-09"),
        _tx("Books", 12, "2026-09-01"),
        _tx("Books", 12, "2026-10-01"),
    ]

    candidates = find_recurring_candidates(history, window_days=10, today=TODAY)

    assert len(candidates) == 1
    assert candidates[0].title_pattern == "gym"
    assert candidates[0].count == 3


def test_detect_cadence_ignores_irregular_gaps() -> None:
    assert detect_cadence([date(2026, 1, 1), date(2026, 1, 15), date(2026, 2, 1)]) is None
    assert detect_cadence([date(2026, 1, 1), date(2026, 1, 8)]) is None
