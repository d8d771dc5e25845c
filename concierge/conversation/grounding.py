"""
Grounding checks: every extracted field must be traceable to the message.

A candidate value that has no token-level evidence in the triggering
message is dropped, never corrected.
"""

import re
from typing import Any, Optional

from concierge.conversation.lexicon import (
    MONTHS,
    NUMBER_WORDS,
    PARTY_SIZE_WORDS,
    RELATIVE_DAYS,
    WEEKDAYS,
    contains_phrase,
    matched_phrases,
)
from concierge.conversation.time_normalization import is_time_grounded, strip_time_tokens
from concierge.utils import fold_text, phone_digits

_NUMERIC_DATE_RE = re.compile(
    r"\b\d{4}-\d{1,2}-\d{1,2}\b"          # 2025-03-15
    r"|\b\d{1,2}[./-]\d{1,2}(?:[./-]\d{2,4})?\b"  # 15.03, 15/03/2025
    r"|\b\d{1,2}(?:st|nd|rd|th)\b"        # 15th
    r"|\bthe\s+\d{1,2}\b"                  # the 15
    r"|\b\d{1,2}\.\s"                      # 15. (hu/de/sr ordinal day)
)
_DIGITS_RE = re.compile(r"(?<!\d)(\d{1,3})(?!\d)")
_WORD_RE = re.compile(r"\w+", re.UNICODE)

# Date words that are also everyday words ("May I...", "sun", "sept" as seven).
# They only count next to a day number or after a date preposition.
_AMBIGUOUS_DATE_WORDS = frozenset({
    "may", "mar", "mart", "jan", "jun", "jul", "sept", "mai",
    "mon", "wed", "sat", "sun", "fri",
})
_DATE_PREPOSITIONS = frozenset({
    "on", "this", "next", "in", "of", "until", "am", "le", "el", "en", "im", "u", "до",
})
_DAY_NUMBER_RE = re.compile(r"\d{1,2}(?:st|nd|rd|th)?")
_MONTH_DAY_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(m) for m in MONTHS) + r")\.?\s+\d{1,2}(?!\d)"
    r"|(?<!\d)\d{1,2}\.?\s+(?:" + "|".join(re.escape(m) for m in MONTHS) + r")(?!\w)",
    re.IGNORECASE,
)
_DATE_SPAN_RE = re.compile(
    r"\b\d{4}-\d{1,2}-\d{1,2}\b|\b\d{1,2}[./]\d{1,2}(?:[./]\d{2,4})?\b|\b\d{1,2}(?:st|nd|rd|th)\b"
)


def is_name_grounded(candidate: str, message: str) -> bool:
    """Accept a name only if its text appears in the message (case-insensitive)."""
    name = fold_text(candidate)
    if len(name) < 2:
        return False
    text = fold_text(message)
    if name in text:
        return True
    message_words = set(_WORD_RE.findall(text))
    name_words = _WORD_RE.findall(name)
    return bool(name_words) and all(word in message_words for word in name_words)


def is_phone_grounded(candidate: str, message: str) -> bool:
    """Accept a phone only if its digits occur contiguously in the message digits."""
    digits = phone_digits(candidate)
    return len(digits) >= 7 and digits in phone_digits(message)


def is_date_grounded(message: str) -> bool:
    """Whether the message carries any date-like token."""
    if _NUMERIC_DATE_RE.search(message):
        return True
    matched = {fold_text(p) for p in matched_phrases(message, WEEKDAYS + MONTHS + RELATIVE_DAYS)}
    if matched - _AMBIGUOUS_DATE_WORDS:
        return True
    if not matched:
        return False
    words = _WORD_RE.findall(fold_text(message))
    for i, word in enumerate(words):
        if word not in matched:
            continue
        before = words[i - 1] if i > 0 else ""
        after = words[i + 1] if i + 1 < len(words) else ""
        if (
            before in _DATE_PREPOSITIONS
            or _DAY_NUMBER_RE.fullmatch(before)
            or _DAY_NUMBER_RE.fullmatch(after)
        ):
            return True
    return False


def party_size_from_words(message: str, languages: set[str]) -> Optional[int]:
    """Look up a fixed-headcount word ("впятером", "zu zweit") for the given languages."""
    for language in languages:
        table = PARTY_SIZE_WORDS.get(language, {})
        # Longest phrase first so "the two of us" beats shorter overlaps.
        for phrase in sorted(table, key=len, reverse=True):
            if contains_phrase(message, (phrase,)):
                return table[phrase]
    return None


def is_party_size_grounded(candidate: int, message: str, languages: set[str]) -> bool:
    """Accept a party size if the digit, a number word, or a headcount word is present.

    Digits that belong to a clock time or a date ("at 7", "May 5") do not count.
    """
    counts = _MONTH_DAY_RE.sub(" ", _DATE_SPAN_RE.sub(" ", strip_time_tokens(message)))
    if any(int(d) == candidate for d in _DIGITS_RE.findall(counts)):
        return True
    folded_words = set(_WORD_RE.findall(fold_text(message)))
    if any(NUMBER_WORDS.get(word) == candidate for word in folded_words):
        return True
    return party_size_from_words(message, languages) == candidate


def is_comment_grounded(candidate: str, message: str) -> bool:
    """Comments need at least one substantive word shared with the message."""
    message_words = {w for w in _WORD_RE.findall(fold_text(message)) if len(w) >= 3}
    comment_words = {w for w in _WORD_RE.findall(fold_text(candidate)) if len(w) >= 3}
    return bool(message_words & comment_words)


def check_grounding(
    field: str, value: Any, message: str, normalized: str, languages: set[str]
) -> bool:
    """Dispatch to the per-field grounding rule."""
    if field == "name":
        return is_name_grounded(str(value), message)
    if field == "phone":
        return is_phone_grounded(str(value), message)
    if field == "date":
        return is_date_grounded(message)
    if field == "time":
        return is_time_grounded(str(value), normalized)
    if field == "party_size":
        try:
            return is_party_size_grounded(int(value), message, languages)
        except (TypeError, ValueError):
            return False
    if field == "comments":
        return is_comment_grounded(str(value), message)
    return False
