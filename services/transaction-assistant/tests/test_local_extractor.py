from datetime import date

import pytest
from local_extractor import parse, relative_date

TODAY = date(2026, 10, 19)


def test_yesterday_gas_is_a_single_expense() -> None:
    result = parse("Yesterday gas 500", "en", today=TODAY)

    assert result.success is True
    assert len(result.transactions) == 1
    candidate = result.transaction
    assert candidate.title == "Gas"
    assert candidate.amount == 500
    assert candidate.type == "expense"
    assert candidate.date == "2026-10-18"
    assert candidate.category_name == "Transport"


def test_parse_is_idempotent() -> None:
    first = parse("yesterday coffee 5; taxi 10", "en", today=TODAY)
    second = parse("yesterday coffee 5; taxi 10", "en", today=TODAY)

    assert first == second


@pytest.mark.parametrize(
    "text",
    ["let's talk about my week", "How are you?", "coffee", "last friday pizza 20"],
)
def test_input_without_a_resolvable_transaction_is_declined(text: str) -> None:
    result = parse(text, "en", today=TODAY)

    assert result.success is False
    assert result.transactions == []
    assert result.reason


@pytest.mark.parametrize("text", ["-50 coffee", "coffee 0", "coffee 5 10"])
def test_negative_zero_and_ambiguous_amounts_are_declined(text: str) -> None:
    assert parse(text, "en", today=TODAY).success is False


def test_multiple_transactions_split_on_conjunction() -> None:
    result = parse("Coffee 5 and taxi 10", "en", today=TODAY)

    assert result.success is True
    assert [c.title for c in result.transactions] == ["Coffee", "Taxi"]
    assert [c.amount for c in result.transactions] == [5, 10]
    assert [c.category_name for c in result.transactions] == ["Food", "Transport"]
    assert all(c.date == TODAY.isoformat() for c in result.transactions)


def test_date_from_one_segment_applies_to_the_others() -> None:
    result = parse("yesterday coffee 5; taxi 10", "en", today=TODAY)

    assert [c.date for c in result.transactions] == ["2026-10-18", "2026-10-18"]


def test_segment_without_amount_falls_back_to_whole_text() -> None:
    result = parse("Coffee and cake 5", "en", today=TODAY)

    assert result.success is True
    assert len(result.transactions) == 1
    assert result.transaction.title == "Coffee cake"
    assert result.transaction.amount == 5


@pytest.mark.parametrize(
    ("text", "locale", "amount"),
    [
        ("rent 1,500.50", "en", 1500.5),
        ("lunch $12.50", "en", 12.5),
        ("кофе 1 500,50", "ru", 1500.5),
        ("кофе 1.500,50", "ru", 1500.5),
        ("кава 250 грн", "uk", 250),
        ("kopi 1.500", "id", 1500),
        ("किराना 1,50,000", "hi", 150000),
        ("커피 4,500원", "ko", 4500),
        ("커피 4.5", "ko", 4.5),
        ("Кава 3.10", "uk", 3.1),
        ("Kopi 3.5", "id", 3.5),
        ("Кофе 12.05", "ru", 12.05),
    ],
)
def test_locale_number_formats(text: str, locale: str, amount: float) -> None:
    result = parse(text, locale, today=TODAY)

    assert result.success is True
    assert result.transaction.amount == amount


def test_currency_code_after_number_is_not_part_of_title() -> None:
    result = parse("500 USD taxi", "en", today=TODAY)

    assert result.transaction.title == "Taxi"
    assert result.transaction.amount == 500


def test_filler_words_removed_and_title_capitalized() -> None:
    result = parse("spent 20 on PIZZA", "en", today=TODAY)

    assert result.transaction.title == "Pizza"
    assert result.transaction.category_name == "Food"


@pytest.mark.parametrize("text", ["salary 3000", "+200 freelance"])
def test_income_markers(text: str) -> None:
    result = parse(text, "en", today=TODAY)

    assert result.transaction.type == "income"
    assert result.transaction.category_name == "Income"


def test_russian_relative_date_and_category() -> None:
    result = parse("вчера кофе 1 500,50", "ru", today=TODAY)

    assert result.transaction.title == "Кофе"
    assert result.transaction.date == "2026-10-18"
    assert result.transaction.category_name == "Food"


@pytest.mark.parametrize(
    ("text", "locale", "expected_date"),
    [
        ("10/18 lunch 12", "en", "2026-10-18"),
        ("18.10.2026 обед 300", "ru", "2026-10-18"),
        ("2026-10-01 books 30", "en", "2026-10-01"),
    ],
)
def test_numeric_dates_follow_locale_order(text: str, locale: str, expected_date: str) -> None:
    result = parse(text, locale, today=TODAY)

    assert result.success is True
    assert result.transaction.date == expected_date


def test_japanese_relative_date_without_spaces_between_words() -> None:
    result = parse("昨日 コーヒー 500円", "ja", today=TODAY)

    assert result.transaction.title == "コーヒー"
    assert result.transaction.amount == 500
    assert result.transaction.date == "2026-10-18"


def test_locale_tags_and_unknown_locales_resolve() -> None:
    assert parse("кофе 150", "ru-RU", today=TODAY).transaction.amount == 150
    assert parse("coffee 3", "pt-BR", today=TODAY).transaction.title == "Coffee"


def test_to_dict_exposes_first_and_all_transactions() -> None:
    payload = parse("coffee 5", "en", today=TODAY).to_dict()

    assert payload["success"] is True
    assert payload["transaction"]["title"] == "Coffee"
    assert len(payload["transactions"]) == 1


def test_relative_date_lookup() -> None:
    assert relative_date("bought it yesterday", "en", today=TODAY) == date(2026, 10, 18)
    assert relative_date("вчера", "ru", today=TODAY) == date(2026, 10, 18)
    assert relative_date("no dates here", "en", today=TODAY) is None


def test_dotted_price_without_year_is_not_a_date() -> None:
    result = parse("Кофе 12.05", "ru", today=TODAY)

    assert result.transaction.amount == 12.05
    assert result.transaction.date == TODAY.isoformat()
