"""
Deterministic, locale-aware extraction of transaction candidates from free text.

`parse("Yesterday gas 500", "en")` yields one expense candidate titled "Gas"
dated yesterday without any network call. When no monetary amount can be
isolated the result has `success=False`; the session treats that as the
signal to escalate to the remote assistant.

Input that needs calendar reasoning (weekday names, "last week") is also
declined so the remote service resolves it instead of the parser guessing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from functools import lru_cache
from typing import Any

from assistant_models import TransactionCandidate, TransactionType
from category_lookup import INCOME_CATEGORY, detect_category
from locales import LocaleRules, rules_for

CURRENCY_SYMBOLS = "$€£¥₴₽₹₩円원"
PREFIX_CURRENCY_CODES = ("usd", "eur", "gbp", "uah", "rub", "inr", "idr", "jpy", "krw", "rs", "rp")
SUFFIX_CURRENCY_CODES = (
    "dollars", "dollar", "bucks", "usd", "eur", "euro", "euros", "gbp",
    "uah", "грн", "гривен", "гривень", "гривні", "гривня",
    "rub", "рублей", "рубля", "рубль", "руб", "р",
    "inr", "rupees", "rs", "idr", "rupiah", "jpy", "yen", "krw", "won",
)

_SPACE_SEPARATORS = (" ", "\u00a0", "\u202f")
_TITLE_STRIP = " \t.,;:!?()[]{}\"'«»“”-–—/\\|"
_WHITESPACE_RE = re.compile(r"\s+")
_SEGMENT_RE = re.compile(r"\s*(?:;|\n|,\s+)\s*")
_ISO_DATE_RE = re.compile(r"(?<![\d.,/-])(\d{4})-(\d{1,2})-(\d{1,2})(?![\d])")


@dataclass
class ParseResult:
    success: bool
    transactions: list[TransactionCandidate] = field(default_factory=list)
    reason: str | None = None

    @property
    def transaction(self) -> TransactionCandidate | None:
        return self.transactions[0] if self.transactions else None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.transactions:
            payload["transaction"] = self.transactions[0].to_dict()
            payload["transactions"] = [candidate.to_dict() for candidate in self.transactions]
        if self.reason:
            payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class _Draft:
    title: str
    amount: float
    type: TransactionType
    date: date | None


class _Declined(Exception):
    """A segment the local parser will not turn into a candidate."""


def parse(raw_text: str, locale: str | None, *, today: date | None = None) -> ParseResult:
    """Extract zero or more transaction candidates from `raw_text`."""

    rules = rules_for(locale)
    today = today or date.today()
    text = _WHITESPACE_RE.sub(" ", (raw_text or "").replace("\n", " ; ")).strip(" ;")
    if not text:
        return ParseResult(success=False, reason="empty input")

    if _mentions_any(text, rules.deferred_date_words, rules):
        return ParseResult(success=False, reason="date expression needs remote resolution")

    segments = _split_segments(text, rules)
    try:
        drafts = [_extract_segment(segment, rules, today) for segment in segments]
    except _Declined as exc:
        if len(segments) == 1:
            return ParseResult(success=False, reason=str(exc))
        try:
            drafts = [_extract_segment(text, rules, today)]
        except _Declined as whole_exc:
            return ParseResult(success=False, reason=str(whole_exc))

    shared_date = next((draft.date for draft in drafts if draft.date is not None), None)
    candidates = [
        TransactionCandidate(
            title=draft.title,
            amount=draft.amount,
            type=draft.type,
            category_name=INCOME_CATEGORY if draft.type == "income" else detect_category(draft.title),
            date=(draft.date or shared_date or today).isoformat(),
        )
        for draft in drafts
    ]
    return ParseResult(success=True, transactions=candidates)


def relative_date(text: str, locale: str | None, *, today: date | None = None) -> date | None:
    """Resolve a relative date word ("yesterday", "вчера", ...) mentioned anywhere in `text`."""

    rules = rules_for(locale)
    today = today or date.today()
    for word, offset in sorted(rules.relative_dates.items(), key=lambda item: -len(item[0])):
        if _word_pattern(word, rules.code).search(text or ""):
            return today + timedelta(days=offset)
    return None


def _split_segments(text: str, rules: LocaleRules) -> list[str]:
    pattern = _conjunction_pattern(rules.code)
    pieces: list[str] = []
    for chunk in _SEGMENT_RE.split(text):
        pieces.extend(pattern.split(chunk) if pattern else [chunk])
    return [piece.strip() for piece in pieces if piece and piece.strip(_TITLE_STRIP)]


def _extract_segment(segment: str, rules: LocaleRules, today: date) -> _Draft:
    when, rest = _extract_date(segment, rules, today)

    matches = [
        (match, value)
        for match in _amount_pattern(rules.code).finditer(rest)
        if (value := _parse_number(match.group("number"), rules)) is not None
    ]
    if not matches:
        raise _Declined("no monetary amount found")
    if len(matches) > 1:
        raise _Declined("more than one amount in a single transaction")

    match, value = matches[0]
    if match.group("sign") == "-" or value <= 0:
        raise _Declined("amount must be positive")

    remainder = rest[: match.start()] + " " + rest[match.end() :]
    is_income = match.group("sign") == "+" or _mentions_any(remainder, rules.income_markers, rules)
    title = _clean_title(remainder, rules)
    if not title:
        raise _Declined("no title left after removing amount and date")

    return _Draft(
        title=title,
        amount=round(value, 2),
        type="income" if is_income else "expense",
        date=when,
    )


def _extract_date(segment: str, rules: LocaleRules, today: date) -> tuple[date | None, str]:
    for word, offset in sorted(rules.relative_dates.items(), key=lambda item: -len(item[0])):
        match = _word_pattern(word, rules.code).search(segment)
        if match:
            return today + timedelta(days=offset), _cut(segment, match)

    match = _ISO_DATE_RE.search(segment)
    if match:
        resolved = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if resolved:
            return resolved, _cut(segment, match)

    for match in _numeric_date_pattern(rules.code).finditer(segment):
        # "4.5" or "12.05" without a year is a price; dotted dates need the year.
        if match.group(3) is None and "." in match.group(0):
            continue
        resolved = _resolve_numeric_date(match.groups(), rules, today)
        if resolved:
            return resolved, _cut(segment, match)

    return None, segment


def _resolve_numeric_date(groups: tuple[str | None, ...], rules: LocaleRules, today: date) -> date | None:
    first, second, third = groups
    if third is None:
        if rules.date_order == "dmy":
            day, month = int(first), int(second)
        else:
            month, day = int(first), int(second)
        return _safe_date(today.year, month, day)

    year = int(third) if len(third) == 4 else 2000 + int(third)
    if rules.date_order == "ymd":
        if len(first) != 4:
            return None
        return _safe_date(int(first), int(second), int(third))
    if rules.date_order == "mdy":
        return _safe_date(year, int(first), int(second))
    return _safe_date(year, int(second), int(first))


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_number(token: str, rules: LocaleRules) -> float | None:
    compact = "".join(char for char in token if char not in _SPACE_SEPARATORS)
    dots, commas = compact.count("."), compact.count(",")

    if dots and commas:
        decimal = "." if compact.rfind(".") > compact.rfind(",") else ","
        thousands = "," if decimal == "." else "."
        integer, _, fraction = compact.rpartition(decimal)
        if thousands in fraction or decimal in integer:
            return None
        return float(f"{integer.replace(thousands, '')}.{fraction}")

    separator = "." if dots else "," if commas else None
    if separator is None:
        return float(compact)

    head, *groups = compact.split(separator)
    if len(groups) == 1 and separator == rules.decimal_separator:
        return float(f"{head}.{groups[0]}")
    # Western (1,500,000) and Indian (15,00,000) digit grouping.
    if len(groups[-1]) == 3 and all(len(group) in (2, 3) for group in groups[:-1]):
        return float(head + "".join(groups))
    if len(groups) == 1 and len(groups[0]) <= 2:
        return float(f"{head}.{groups[0]}")
    return None


def _clean_title(text: str, rules: LocaleRules) -> str:
    tokens = []
    for raw_token in text.split():
        token = raw_token.strip(_TITLE_STRIP)
        if not token or token.lower() in rules.filler_words or token.lower() in rules.conjunctions:
            continue
        if token.strip(CURRENCY_SYMBOLS) == "":
            continue
        tokens.append(token)
    title = " ".join(tokens)
    return title[:1].upper() + title[1:].lower() if title else ""


def _mentions_any(text: str, words: frozenset[str], rules: LocaleRules) -> bool:
    return any(_word_pattern(word, rules.code).search(text) for word in words)


def _cut(text: str, match: re.Match[str]) -> str:
    return f"{text[: match.start()]} {text[match.end() :]}".strip()


@lru_cache(maxsize=512)
def _word_pattern(word: str, locale_code: str) -> re.Pattern[str]:
    escaped = re.escape(word)
    if locale_code == "ja":
        # No spaces between words; match anywhere.
        return re.compile(escaped)
    return re.compile(rf"(?<!\w){escaped}(?!\w)", re.IGNORECASE)


@lru_cache(maxsize=None)
def _conjunction_pattern(locale_code: str) -> re.Pattern[str] | None:
    conjunctions = rules_for(locale_code).conjunctions
    if not conjunctions:
        return None
    alternatives = "|".join(re.escape(word) for word in conjunctions)
    return re.compile(rf"\s+(?:{alternatives})\s+", re.IGNORECASE)


@lru_cache(maxsize=None)
def _numeric_date_pattern(locale_code: str) -> re.Pattern[str]:
    separators = "".join(re.escape(sep) for sep in rules_for(locale_code).date_separators)
    return re.compile(
        rf"(?<![\d.,/-])(\d{{1,4}})[{separators}](\d{{1,2}})(?:[{separators}](\d{{2,4}}))?(?![\d])"
    )


@lru_cache(maxsize=None)
def _amount_pattern(locale_code: str) -> re.Pattern[str]:
    rules = rules_for(locale_code)
    space_groups = "".join(sep for sep in rules.thousands_separators if sep in _SPACE_SEPARATORS)
    space_alternative = rf"|[{space_groups}]\d{{3}}(?!\d)" if space_groups else ""
    number = rf"\d+(?:[.,]\d+{space_alternative})*"

    symbols = re.escape(CURRENCY_SYMBOLS)
    prefix_codes = "|".join(sorted(PREFIX_CURRENCY_CODES, key=len, reverse=True))
    suffix_codes = "|".join(sorted((re.escape(code) for code in SUFFIX_CURRENCY_CODES), key=len, reverse=True))

    return re.compile(
        rf"(?:(?<![\w+\-])(?P<sign>[+\-]))?\s*"
        rf"(?P<prefix>[{symbols}]|(?<!\w)(?:{prefix_codes})\.?)?\s*"
        rf"(?<![\d.,])(?P<number>{number})(?![\d])"
        rf"(?:\s*(?P<suffix>[{symbols}]|(?:{suffix_codes})\.?(?!\w)))?",
        re.IGNORECASE,
    )
