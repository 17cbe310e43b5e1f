"""
Category inference for transaction candidates.

Two strategies, both best-effort:

- `detect_category` maps title keywords to a small set of generic categories
  and is what the local extractor uses on its own.
- `infer_from_history` looks at the user's recent transactions and reuses the
  budget name of a past transaction whose normalized title equals or contains
  the candidate's (either direction). It runs only on the local-extraction
  path; a failure there must never block proposals, so `lookup_recent_categories`
  returns an empty history instead of raising.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from assistant_models import TransactionCandidate
from persistence import PersistenceError, TransactionStore

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Other"
INCOME_CATEGORY = "Income"
RECENT_HISTORY_LIMIT = 50

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Transport": (
        "taxi", "bolt", "uber", "bus", "metro", "subway", "train", "gas", "fuel", "parking",
        "такси", "метро", "автобус", "бензин", "парковка", "поезд",
        "таксі", "паливо", "паркування", "поїзд",
        "bensin", "ojek", "parkir",
        "タクシー", "電車", "ガソリン",
        "택시", "지하철", "주유",
    ),
    "Food": (
        "coffee", "lunch", "dinner", "breakfast", "pizza", "burger", "groceries", "food",
        "beer", "wine", "restaurant", "cafe", "snack", "meal",
        "кофе", "обед", "ужин", "завтрак", "пицца", "продукты", "еда",
        "пиво", "вино", "ресторан", "кафе", "перекус",
        "кава", "обід", "вечеря", "сніданок", "піца", "продукти", "їжа",
        "kopi", "makan", "sarapan",
        "コーヒー", "ランチ", "昼食", "夕食",
        "커피", "점심", "저녁",
    ),
    "Shopping": (
        "shop", "store", "clothes", "shoes", "amazon", "mall", "purchase",
        "магазин", "одежда", "обувь", "покупка", "шопинг",
        "одяг", "взуття", "шопінг",
        "belanja", "baju",
        "買い物", "쇼핑",
    ),
    "Entertainment": (
        "movie", "cinema", "game", "netflix", "spotify", "concert", "theater", "theatre",
        "кино", "фильм", "игра", "концерт", "театр",
        "кіно", "фільм", "гра",
        "bioskop", "映画", "영화",
    ),
}

_WHITESPACE_RE = re.compile(r"\s+")


def detect_category(title: str) -> str:
    """Return the first category whose keyword appears in the title, else "Other"."""

    lowered = title.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


@dataclass(frozen=True)
class HistoryEntry:
    title: str
    category: str


def normalize_history_title(raw: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", (raw or "").strip().lower())


def infer_from_history(
    candidates: Sequence[TransactionCandidate],
    history: Sequence[HistoryEntry],
) -> list[TransactionCandidate]:
    """Replace each candidate's category with the first matching historical budget name."""

    pairs = [
        (normalize_history_title(entry.title), entry.category)
        for entry in history
        if entry.title and entry.category
    ]
    if not pairs:
        return list(candidates)

    enriched: list[TransactionCandidate] = []
    for candidate in candidates:
        title = normalize_history_title(candidate.title)
        match = next(
            (
                category
                for past_title, category in pairs
                if past_title and title and (past_title == title or title in past_title or past_title in title)
            ),
            None,
        )
        enriched.append(candidate.with_category(match) if match else candidate)
    return enriched


async def lookup_recent_categories(
    store: TransactionStore,
    user_id: str,
    *,
    limit: int = RECENT_HISTORY_LIMIT,
) -> list[HistoryEntry]:
    """Fetch (title, budget name) pairs for the user's most recent transactions."""

    try:
        transactions = await store.select(
            "transactions",
            filters={"user_id": user_id},
            columns=("title", "budget_folder_id", "created_at"),
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        folders = await store.select("budget_folders", filters={"user_id": user_id}, columns=("id", "name"))
    except PersistenceError as exc:
        logger.warning({"event": "category_lookup_failed", "user_id": user_id, "error": str(exc)})
        return []

    names = {row.get("id"): row.get("name") for row in folders}
    return [
        HistoryEntry(title=str(row.get("title") or ""), category=str(names[row["budget_folder_id"]]))
        for row in transactions
        if row.get("budget_folder_id") in names and names[row.get("budget_folder_id")]
    ]
