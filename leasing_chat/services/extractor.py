"""Pattern-based extraction of lead fields from visitor messages.

Each field has its own extractor so the rules can be tested in isolation.
``extract_fields`` runs them over one or more utterances (oldest first) and
keeps the first hit per field. The normalizers at the bottom turn stored
values into calendar dates and display times for the CRM payload; stored
values themselves stay as the visitor phrased them.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta, weekday, MO, TU, WE, TH, FR, SA, SU
from pydantic import BaseModel, ConfigDict
from word2number import w2n

logger = logging.getLogger(__name__)

_WEEKDAYS: Dict[str, weekday] = {
    "monday": MO,
    "tuesday": TU,
    "wednesday": WE,
    "thursday": TH,
    "friday": FR,
    "saturday": SA,
    "sunday": SU,
}

_MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

_DAY_WORDS = "today|tonight|tomorrow|this evening|" + "|".join(_WEEKDAYS)
_MONTH_WORDS = "|".join(_MONTHS)
_COUNT_WORDS = (
    r"\d+|a|an|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|"
    r"a few|few|a couple of|a couple|couple"
)

# "tonight@7:00" is a transcription of "tonight at 7:00", not an address.
_DAY_AT_TIME_RE = re.compile(
    rf"\b({_DAY_WORDS})\s*@\s*(\d{{1,2}}(?::[0-5]\d)?\s*(?:[ap]\.?m\.?)?)",
    re.IGNORECASE,
)

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_LOOSE_EMAIL_RE = re.compile(
    r"\b([a-z0-9][a-z0-9._%+-]*(?:\s+dot\s+[a-z0-9._%+-]+)*)"
    r"\s+at\s+"
    r"([a-z0-9-]+(?:\s+dot\s+[a-z0-9-]+)+)\b",
    re.IGNORECASE,
)

_PHONE_RE = re.compile(
    r"(?<![\d/])(?:\+?1[\s.\-]*)?\(?(\d{3})\)?[\s.\-]*(\d{3})[\s.\-]*(\d{4})(?![\d/])"
)

_TOUR_DATE_RE = re.compile(
    rf"\b({_DAY_WORDS})\b|(?<![\d/])(\d{{1,2}}/\d{{1,2}})(?![\d/])",
    re.IGNORECASE,
)

_TOUR_TIME_RE = re.compile(
    r"\b(\d{1,2}(?::[0-5]\d)?\s*[ap]\.?m\.?)(?![a-z])"
    r"|\b(\d{1,2}:[0-5]\d)\b"
    r"|\b(morning|afternoon|noon|evening)\b",
    re.IGNORECASE,
)

_MOVE_IN_VALUE = (
    rf"next month|this month"
    rf"|(?:(?:early|mid|late)\s+)?(?:{_MONTH_WORDS})(?:\s+\d{{1,2}}(?:st|nd|rd|th)?)?"
    rf"|\d{{1,2}}/\d{{1,2}}"
    rf"|in\s+(?:{_COUNT_WORDS})\s+(?:days?|weeks?|months?)"
)
_MOVE_IN_CONTEXT_RE = re.compile(
    rf"\b(?:move|moving|moved|move-in|movein|lease|start)\b[\w\s'-]{{0,25}}?\b({_MOVE_IN_VALUE})\b",
    re.IGNORECASE,
)
_MOVE_IN_STANDALONE_RE = re.compile(
    r"\b(asap|as soon as possible|immediately|right away|next month)\b"
    rf"|\b((?:(?:early|mid|late)\s+)?(?:{'|'.join(m for m in _MONTHS if m != 'may')})"
    r"(?:\s+\d{1,2}(?:st|nd|rd|th)?)?)\b",
    re.IGNORECASE,
)

_NAME_WORD = r"[a-z][a-z'\-]*"
_INTRO_RE = re.compile(
    rf"\b(?:my name is|my name's|name is|i am|i'm|im|this is|call me|it's)\s+({_NAME_WORD})(?:\s+({_NAME_WORD}))?",
    re.IGNORECASE,
)
_BARE_NAME_RE = re.compile(rf"^({_NAME_WORD})(?:\s+({_NAME_WORD}))?$", re.IGNORECASE)

_NOT_NAMES = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "so", "at", "in", "on", "to", "for",
        "from", "with", "of", "by", "me", "my", "you", "your", "it", "is", "was",
        "yes", "yeah", "yep", "yup", "no", "nope", "ok", "okay", "k", "sure", "maybe",
        "hi", "hello", "hey", "thanks", "thank", "please", "cool", "great", "good",
        "fine", "perfect", "awesome", "nice", "sounds", "right", "correct", "done",
        "interested", "looking", "wondering", "calling", "texting", "trying", "just",
        "here", "there", "not", "still", "also", "very", "really", "free", "available",
        "ready", "busy", "new", "moving", "planning", "hoping", "going", "glad", "happy",
        "sorry", "back", "asking", "curious", "tour", "touring", "apartment", "unit",
        "today", "tonight", "tomorrow", "morning", "afternoon", "noon", "evening",
        "weekend", "week", "month", "asap", "now", "later", "soon", "anytime",
        "what", "when", "where", "how", "why", "who", "which", "can", "could", "would",
        "will", "do", "does", "did", "have", "has", "need", "want", "like", "love",
        "pets", "pet", "dog", "cat", "rent", "price", "bye", "goodbye", "help",
        "one", "two", "three", "four", "studio", "bedroom", "bedrooms", "bed", "bath",
        "parking", "laundry", "info", "information", "details", "pricing", "cost",
    }
    | set(_WEEKDAYS)
    | set(_MONTHS)
)


class ExtractedFields(BaseModel):
    """Fields found in one turn. Unset attributes mean nothing was found."""

    model_config = ConfigDict(frozen=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    tour_date: Optional[str] = None
    tour_time: Optional[str] = None
    move_in_date: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        return {key: value for key, value in self.model_dump().items() if value}

    @property
    def is_empty(self) -> bool:
        return not self.as_dict()


def _clean(text: str) -> str:
    text = text.replace("’", "'").replace("‘", "'")
    return _DAY_AT_TIME_RE.sub(r"\1 at \2", text)


def _title_case(word: str) -> str:
    if word.islower() or word.isupper():
        return word.title()
    return word[:1].upper() + word[1:]


def looks_like_email(text: str) -> bool:
    return bool(_EMAIL_RE.search(text) or _LOOSE_EMAIL_RE.search(text))


def extract_email(text: str) -> Optional[str]:
    match = _EMAIL_RE.search(text)
    if match:
        return match.group(0).strip(".").lower()
    loose = _LOOSE_EMAIL_RE.search(text)
    if loose:
        local = re.sub(r"\s+dot\s+", ".", loose.group(1), flags=re.IGNORECASE)
        domain = re.sub(r"\s+dot\s+", ".", loose.group(2), flags=re.IGNORECASE)
        return f"{local}@{domain}".lower()
    return None


def extract_phone(text: str) -> Optional[str]:
    match = _PHONE_RE.search(text)
    if not match:
        return None
    return "".join(match.groups())


def extract_name(text: str, expect_name: bool = False) -> Optional[Tuple[str, Optional[str]]]:
    """Return (first, last) from a self-introduction.

    A bare one or two word reply only counts when ``expect_name`` says the
    visitor was just asked for their name.
    """
    if looks_like_email(text):
        return None

    for match in _INTRO_RE.finditer(text):
        found = _accept_name(match.group(1), match.group(2))
        if found:
            return found

    if not expect_name or any(ch.isdigit() for ch in text) or "?" in text:
        return None
    for line in text.splitlines():
        bare = _BARE_NAME_RE.match(line.strip().strip(".!,"))
        if bare:
            first, last = bare.group(1), bare.group(2)
            if first.lower() in _NOT_NAMES or (last and last.lower() in _NOT_NAMES):
                continue
            return _title_case(first), _title_case(last) if last else None
    return None


def _accept_name(first: str, last: Optional[str]) -> Optional[Tuple[str, Optional[str]]]:
    if len(first) < 2 or first.lower() in _NOT_NAMES:
        return None
    if last and (len(last) < 2 or last.lower() in _NOT_NAMES):
        last = None
    return _title_case(first), _title_case(last) if last else None


def _move_in_match(text: str) -> Optional[re.Match]:
    return _MOVE_IN_CONTEXT_RE.search(text) or _MOVE_IN_STANDALONE_RE.search(text)


def extract_move_in(text: str) -> Optional[str]:
    match = _move_in_match(text)
    if not match:
        return None
    value = next(group for group in match.groups() if group)
    return re.sub(r"\s+", " ", value.lower())


def extract_tour_date(text: str) -> Optional[str]:
    move_in = _move_in_match(text)
    if move_in:
        start, end = move_in.span()
        text = text[:start] + " " * (end - start) + text[end:]
    match = _TOUR_DATE_RE.search(text)
    if not match:
        return None
    if match.group(1):
        return re.sub(r"\s+", " ", match.group(1).lower())
    return match.group(2)


def extract_tour_time(text: str) -> Optional[str]:
    match = _TOUR_TIME_RE.search(text)
    if not match:
        return None
    if match.group(3):
        return match.group(3).lower()
    value = match.group(1) or match.group(2)
    return re.sub(r"\s+", " ", value.strip().lower())


def extract_from_text(text: str, expect_name: bool = False) -> ExtractedFields:
    if not isinstance(text, str) or not text.strip():
        return ExtractedFields()
    text = _clean(text)
    found: Dict[str, Optional[str]] = {
        "phone": extract_phone(text),
        "email": extract_email(text),
        "tour_date": extract_tour_date(text),
        "tour_time": extract_tour_time(text),
        "move_in_date": extract_move_in(text),
    }
    name = extract_name(text, expect_name)
    if name:
        found["first_name"], found["last_name"] = name
    return ExtractedFields(**{key: value for key, value in found.items() if value})


def extract_fields(*utterances: str, expect_name: bool = False) -> ExtractedFields:
    """Extract fields from utterances in conversation order; the first hit per field wins."""
    merged: Dict[str, str] = {}
    for utterance in _flatten(utterances):
        for key, value in extract_from_text(utterance, expect_name).as_dict().items():
            merged.setdefault(key, value)
    if merged:
        logger.debug("extractor.fields keys=%s", sorted(merged))
    return ExtractedFields(**merged)


def _flatten(utterances: Iterable) -> Iterable[str]:
    for item in utterances:
        if isinstance(item, (list, tuple)):
            yield from _flatten(item)
        elif isinstance(item, str):
            yield item


# ---------------------------------------------------------------------------
# Normalization for external systems


def normalize_tour_date(value: Optional[str], today: date) -> Optional[str]:
    """Resolve a stored tour date to ISO format relative to ``today``."""
    if not value:
        return None
    lower = value.strip().lower()
    if lower in {"today", "tonight", "this evening"}:
        return today.isoformat()
    if lower == "tomorrow":
        return (today + timedelta(days=1)).isoformat()
    if lower in _WEEKDAYS:
        # days=+1 makes a same-day name roll to next week's occurrence.
        return (today + relativedelta(days=+1, weekday=_WEEKDAYS[lower])).isoformat()
    slash = re.fullmatch(r"(\d{1,2})/(\d{1,2})", lower)
    if slash:
        resolved = _month_day(int(slash.group(1)), int(slash.group(2)), today)
        return resolved.isoformat() if resolved else None
    return value


def normalize_tour_time(value: Optional[str]) -> Optional[str]:
    """Render a stored tour time as a display string such as ``2:30 PM``."""
    if not value:
        return None
    lower = value.strip().lower()
    buckets = {"morning": "Morning", "afternoon": "Afternoon", "evening": "Evening", "noon": "12:00 PM"}
    if lower in buckets:
        return buckets[lower]
    match = re.fullmatch(r"(\d{1,2})(?::(\d{2}))?\s*([ap])?\.?(?:m\.?)?", lower)
    if not match:
        return value
    hour = int(match.group(1))
    minutes = match.group(2) or "00"
    meridiem = match.group(3)
    if hour > 23:
        return value
    if meridiem is None:
        if hour >= 13:
            hour, meridiem = hour - 12, "p"
        elif hour == 0:
            hour, meridiem = 12, "a"
        elif hour == 12 or hour <= 7:
            meridiem = "p"
        else:
            meridiem = "a"
    elif hour > 12:
        hour -= 12
    elif hour == 0:
        hour = 12
    return f"{hour}:{minutes} {'PM' if meridiem == 'p' else 'AM'}"


def normalize_move_in(value: Optional[str], today: date) -> Optional[str]:
    """Resolve a stored move-in phrase to an ISO date when it names one."""
    if not value:
        return None
    lower = re.sub(r"\s+", " ", value.strip().lower())
    if lower in {"asap", "as soon as possible", "immediately", "right away", "this month"}:
        return today.isoformat()
    if lower == "next month":
        return (today + relativedelta(months=+1, day=1)).isoformat()
    relative = re.fullmatch(r"in (.+?) (day|week|month)s?", lower)
    if relative:
        count = _count(relative.group(1))
        if count is None:
            return value
        unit = relative.group(2)
        delta = {"day": relativedelta(days=count), "week": relativedelta(weeks=count), "month": relativedelta(months=count)}[unit]
        return (today + delta).isoformat()
    slash = re.fullmatch(r"(\d{1,2})/(\d{1,2})", lower)
    if slash:
        resolved = _month_day(int(slash.group(1)), int(slash.group(2)), today)
        return resolved.isoformat() if resolved else value
    month = re.fullmatch(rf"(?:(early|mid|late) )?({_MONTH_WORDS})(?: (\d{{1,2}})(?:st|nd|rd|th)?)?", lower)
    if month:
        day = int(month.group(3)) if month.group(3) else {"mid": 15, "late": 25}.get(month.group(1) or "", 1)
        resolved = _month_day(_MONTHS.index(month.group(2)) + 1, day, today)
        return resolved.isoformat() if resolved else value
    try:
        return dateparser.parse(value, fuzzy=True, default=_midnight(today)).date().isoformat()
    except (ValueError, OverflowError):
        logger.debug("extractor.unparsed_move_in value=%s", value)
        return value


def _month_day(month: int, day: int, today: date) -> Optional[date]:
    try:
        candidate = date(today.year, month, day)
    except ValueError:
        return None
    if candidate < today:
        try:
            candidate = date(today.year + 1, month, day)
        except ValueError:
            return None
    return candidate


def _count(word: str) -> Optional[int]:
    word = word.strip()
    if word.isdigit():
        return int(word)
    shorthand = {"a": 1, "an": 1, "few": 3, "a few": 3, "couple": 2, "a couple": 2, "a couple of": 2}
    if word in shorthand:
        return shorthand[word]
    try:
        return int(w2n.word_to_num(word))
    except ValueError:
        return None


def _midnight(today: date) -> datetime:
    return datetime(today.year, today.month, today.day)
