"""
Locale tables for the transaction assistant.

Each supported UI language gets a `LocaleRules` entry describing how amounts
and dates are written and which words mark dates, income, filler, and
multi-transaction conjunctions. Localized notices (rate limited, timed out,
fallbacks) live here too so the session never hard-codes user-facing text.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Literal

DEFAULT_LOCALE = "en"

DateOrder = Literal["mdy", "dmy", "ymd"]


@dataclass(frozen=True)
class LocaleRules:
    code: str
    decimal_separator: str
    thousands_separators: tuple[str, ...]
    date_order: DateOrder
    date_separators: tuple[str, ...]
    # Relative date word -> offset in days from today.
    relative_dates: dict[str, int]
    # Words that need calendar reasoning the local parser does not do.
    deferred_date_words: frozenset[str]
    income_markers: frozenset[str]
    filler_words: frozenset[str]
    conjunctions: tuple[str, ...]


_EN = LocaleRules(
    code="en",
    decimal_separator=".",
    thousands_separators=(",",),
    date_order="mdy",
    date_separators=("/",),
    relative_dates={"day before yesterday": -2, "yesterday": -1, "today": 0, "tomorrow": 1},
    deferred_date_words=frozenset(
        {
            "last",
            "next",
            "ago",
            "week",
            "month",
            "monday",
            "tuesday",
            "wednesday",
            "thursday",
            "friday",
            "saturday",
            "sunday",
        }
    ),
    income_markers=frozenset({"income", "salary", "paycheck", "received", "earned", "refund", "bonus", "wage", "wages"}),
    filler_words=frozenset({"spent", "paid", "bought", "for", "on", "at", "i", "my", "a", "the", "got"}),
    conjunctions=("and",),
)

_RU = LocaleRules(
    code="ru",
    decimal_separator=",",
    thousands_separators=(" ", "\u00a0", "\u202f", "."),
    date_order="dmy",
    date_separators=(".", "/"),
    relative_dates={"позавчера": -2, "вчера": -1, "сегодня": 0, "завтра": 1},
    deferred_date_words=frozenset(
        {
            "прошлый",
            "прошлой",
            "неделя",
            "неделе",
            "месяц",
            "месяце",
            "назад",
            "понедельник",
            "вторник",
            "среда",
            "среду",
            "четверг",
            "пятница",
            "пятницу",
            "суббота",
            "субботу",
            "воскресенье",
        }
    ),
    income_markers=frozenset({"доход", "зарплата", "зп", "получил", "получила", "заработал", "премия", "возврат"}),
    filler_words=frozenset({"потратил", "потратила", "заплатил", "заплатила", "купил", "купила", "на", "за", "в"}),
    conjunctions=("и",),
)

_UK = LocaleRules(
    code="uk",
    decimal_separator=",",
    thousands_separators=(" ", "\u00a0", "\u202f", "."),
    date_order="dmy",
    date_separators=(".", "/"),
    relative_dates={"позавчора": -2, "вчора": -1, "сьогодні": 0, "завтра": 1},
    deferred_date_words=frozenset(
        {
            "минулий",
            "минулого",
            "тиждень",
            "тижня",
            "місяць",
            "місяця",
            "тому",
            "понеділок",
            "вівторок",
            "середа",
            "середу",
            "четвер",
            "п'ятниця",
            "п'ятницю",
            "субота",
            "суботу",
            "неділя",
            "неділю",
        }
    ),
    income_markers=frozenset({"дохід", "зарплата", "зп", "отримав", "отримала", "заробив", "премія", "повернення"}),
    filler_words=frozenset({"витратив", "витратила", "заплатив", "заплатила", "купив", "купила", "на", "за", "в"}),
    conjunctions=("та", "і", "й"),
)

_HI = LocaleRules(
    code="hi",
    decimal_separator=".",
    thousands_separators=(",",),
    date_order="dmy",
    date_separators=("/", "-"),
    # "कल" means both yesterday and tomorrow, so only today is resolved locally.
    relative_dates={"आज": 0},
    deferred_date_words=frozenset({"कल", "परसों", "पिछले", "हफ्ते", "महीने", "सोमवार", "मंगलवार", "बुधवार", "गुरुवार", "शुक्रवार", "शनिवार", "रविवार"}),
    income_markers=frozenset({"आय", "वेतन", "तनख्वाह", "सैलरी", "salary", "income"}),
    filler_words=frozenset({"पर", "के", "लिए", "में", "खर्च", "किया"}),
    conjunctions=("और",),
)

_ID = LocaleRules(
    code="id",
    decimal_separator=",",
    thousands_separators=(".", " "),
    date_order="dmy",
    date_separators=("/", "."),
    relative_dates={"kemarin lusa": -2, "kemarin": -1, "hari ini": 0, "besok": 1},
    deferred_date_words=frozenset(
        {"lalu", "minggu", "bulan", "senin", "selasa", "rabu", "kamis", "jumat", "sabtu"}
    ),
    income_markers=frozenset({"gaji", "pemasukan", "pendapatan", "bonus", "terima", "menerima"}),
    filler_words=frozenset({"beli", "bayar", "untuk", "di", "buat"}),
    conjunctions=("dan",),
)

_JA = LocaleRules(
    code="ja",
    decimal_separator=".",
    thousands_separators=(",",),
    date_order="ymd",
    date_separators=("/",),
    relative_dates={"一昨日": -2, "おととい": -2, "昨日": -1, "きのう": -1, "今日": 0, "きょう": 0, "明日": 1, "あした": 1},
    deferred_date_words=frozenset({"先週", "先月", "来週", "月曜", "火曜", "水曜", "木曜", "金曜", "土曜", "日曜"}),
    income_markers=frozenset({"給料", "収入", "ボーナス", "給与", "返金"}),
    filler_words=frozenset({"に", "で", "の", "を"}),
    conjunctions=("と",),
)

_KO = LocaleRules(
    code="ko",
    decimal_separator=".",
    thousands_separators=(",",),
    date_order="ymd",
    date_separators=("/", "."),
    relative_dates={"그저께": -2, "어제": -1, "오늘": 0, "내일": 1},
    deferred_date_words=frozenset({"지난주", "지난달", "다음주", "월요일", "화요일", "수요일", "목요일", "금요일", "토요일", "일요일"}),
    income_markers=frozenset({"월급", "수입", "급여", "보너스", "환불"}),
    filler_words=frozenset({"에", "으로", "로"}),
    conjunctions=("그리고",),
)

LOCALE_RULES: dict[str, LocaleRules] = {
    rules.code: rules for rules in (_EN, _UK, _RU, _HI, _ID, _JA, _KO)
}
SUPPORTED_LOCALES = tuple(LOCALE_RULES)


def resolve_locale(locale: str | None) -> str:
    """Reduce a locale tag (`ru-RU`, `pt_BR`) to a supported language or the default."""

    language = re.split(r"[-_]", (locale or "").strip().lower(), maxsplit=1)[0]
    return language if language in LOCALE_RULES else DEFAULT_LOCALE


def rules_for(locale: str | None) -> LocaleRules:
    return LOCALE_RULES[resolve_locale(locale)]


class Notice(str, Enum):
    """User-facing notices the session emits on its own behalf."""

    RATE_LIMITED = "rate_limited"
    TIMED_OUT = "timed_out"
    TIMED_OUT_TRANSACTION = "timed_out_transaction"
    UNAVAILABLE = "unavailable"
    TRANSACTION_FALLBACK = "transaction_fallback"
    EMPTY_RESPONSE = "empty_response"


NOTICES: dict[str, dict[Notice, str]] = {
    "en": {
        Notice.RATE_LIMITED: "You've reached the assistant limit. Please try again later.",
        Notice.TIMED_OUT: "Request timed out. Please try again.",
        Notice.TIMED_OUT_TRANSACTION: "Request timed out. Try again or add the transaction manually.",
        Notice.UNAVAILABLE: "Assistant is temporarily unavailable. Please try again later.",
        Notice.TRANSACTION_FALLBACK: "I couldn't process that transaction right now. Try again or add it manually.",
        Notice.EMPTY_RESPONSE: "The assistant could not generate a response this time. Try rephrasing your request.",
    },
    "ru": {
        Notice.RATE_LIMITED: "Лимит запросов к ассистенту исчерпан. Попробуйте позже.",
        Notice.TIMED_OUT: "Запрос занял слишком много времени. Попробуйте ещё раз.",
        Notice.TIMED_OUT_TRANSACTION: "Запрос занял слишком много времени. Повторите или добавьте транзакцию вручную.",
        Notice.UNAVAILABLE: "Ассистент временно недоступен. Попробуйте повторить позже.",
        Notice.TRANSACTION_FALLBACK: "Не удалось обработать транзакцию. Повторите или добавьте её вручную.",
        Notice.EMPTY_RESPONSE: "Ассистент не смог сформировать ответ. Попробуйте переформулировать запрос.",
    },
    "uk": {
        Notice.RATE_LIMITED: "Ліміт запитів до асистента вичерпано. Спробуйте пізніше.",
        Notice.TIMED_OUT: "Запит тривав занадто довго. Спробуйте ще раз.",
        Notice.TIMED_OUT_TRANSACTION: "Запит тривав занадто довго. Повторіть або додайте транзакцію вручну.",
        Notice.UNAVAILABLE: "Асистент тимчасово недоступний. Спробуйте пізніше.",
        Notice.TRANSACTION_FALLBACK: "Не вдалося обробити транзакцію. Повторіть або додайте її вручну.",
        Notice.EMPTY_RESPONSE: "Асистент не зміг сформувати відповідь. Спробуйте переформулювати запит.",
    },
    "hi": {
        Notice.RATE_LIMITED: "सहायक की सीमा पूरी हो गई है। कृपया बाद में पुनः प्रयास करें।",
        Notice.TIMED_OUT: "अनुरोध का समय समाप्त हो गया। कृपया पुनः प्रयास करें।",
        Notice.TIMED_OUT_TRANSACTION: "अनुरोध का समय समाप्त हो गया। पुनः प्रयास करें या लेनदेन मैन्युअल रूप से जोड़ें।",
        Notice.UNAVAILABLE: "सहायक अस्थायी रूप से उपलब्ध नहीं है। कृपया बाद में प्रयास करें।",
        Notice.TRANSACTION_FALLBACK: "यह लेनदेन अभी संसाधित नहीं हो सका। पुनः प्रयास करें या इसे मैन्युअल रूप से जोड़ें।",
        Notice.EMPTY_RESPONSE: "सहायक इस बार उत्तर नहीं दे सका। अपना अनुरोध दूसरे शब्दों में लिखें।",
    },
    "id": {
        Notice.RATE_LIMITED: "Batas asisten telah tercapai. Silakan coba lagi nanti.",
        Notice.TIMED_OUT: "Permintaan melebihi batas waktu. Silakan coba lagi.",
        Notice.TIMED_OUT_TRANSACTION: "Permintaan melebihi batas waktu. Coba lagi atau tambahkan transaksi secara manual.",
        Notice.UNAVAILABLE: "Asisten sedang tidak tersedia. Silakan coba lagi nanti.",
        Notice.TRANSACTION_FALLBACK: "Transaksi tidak dapat diproses saat ini. Coba lagi atau tambahkan secara manual.",
        Notice.EMPTY_RESPONSE: "Asisten tidak dapat membuat jawaban kali ini. Coba ubah kalimat permintaan Anda.",
    },
    "ja": {
        Notice.RATE_LIMITED: "アシスタントの利用上限に達しました。しばらくしてからお試しください。",
        Notice.TIMED_OUT: "リクエストがタイムアウトしました。もう一度お試しください。",
        Notice.TIMED_OUT_TRANSACTION: "リクエストがタイムアウトしました。再試行するか、手動で取引を追加してください。",
        Notice.UNAVAILABLE: "アシスタントは一時的に利用できません。しばらくしてからお試しください。",
        Notice.TRANSACTION_FALLBACK: "この取引を処理できませんでした。再試行するか、手動で追加してください。",
        Notice.EMPTY_RESPONSE: "今回は回答を生成できませんでした。言い換えてお試しください。",
    },
    "ko": {
        Notice.RATE_LIMITED: "어시스턴트 사용 한도에 도달했습니다. 나중에 다시 시도하세요.",
        Notice.TIMED_OUT: "요청 시간이 초과되었습니다. 다시 시도하세요.",
        Notice.TIMED_OUT_TRANSACTION: "요청 시간이 초과되었습니다. 다시 시도하거나 거래를 직접 추가하세요.",
        Notice.UNAVAILABLE: "어시스턴트를 일시적으로 사용할 수 없습니다. 나중에 다시 시도하세요.",
        Notice.TRANSACTION_FALLBACK: "이 거래를 처리하지 못했습니다. 다시 시도하거나 직접 추가하세요.",
        Notice.EMPTY_RESPONSE: "이번에는 답변을 생성하지 못했습니다. 요청을 다르게 표현해 보세요.",
    },
}


def notice_text(notice: Notice, locale: str | None, *, retry_after: float | None = None) -> str:
    text = NOTICES[resolve_locale(locale)][notice]
    if notice is Notice.RATE_LIMITED and retry_after and math.isfinite(retry_after):
        text = f"{text} ({max(1, round(retry_after))}s)"
    return text


_DIGIT_RE = re.compile(r"\d")


def looks_like_transaction(text: str) -> bool:
    """True when the text has both a digit and a letter, e.g. "coffee 50"."""

    return bool(_DIGIT_RE.search(text)) and any(char.isalpha() for char in text)
