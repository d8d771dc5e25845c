"""
Deterministic time-token normalization.

Runs before any generative step so that typo'd separators ("19-20",
"19.30", "19 30") are read as one clock time instead of being mistaken
for a range, while genuine ranges ("7-9pm", "between 7 and 8") are left
intact and reported separately.
"""

import re
from dataclasses import dataclass
from typing import Optional

_JOINERS = r"(?:and|to|till|until|и|до|i|do|und|bis|y|et|a|e)"
_OPENERS = r"(?:between|from|между|с|od|između|izmedju|zwischen|entre|tra|von|de)"

_RANGE_PATTERNS = [
    # 19:00-20:00, 7.30 - 9.00
    re.compile(r"\b\d{1,2}[:.]\d{2}\s*(?:[-–]|\s" + _JOINERS + r"\s)\s*\d{1,2}[:.]\d{2}\b"),
    # 7-9pm, 7 to 9 pm, 7pm-9pm
    re.compile(
        r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)?\s*(?:[-–]|\s" + _JOINERS + r"\s)\s*"
        r"\d{1,2}(?::\d{2})?\s*(?:am|pm)\b",
        re.IGNORECASE,
    ),
    # between 7 and 8, from 19-20, с 7 до 9
    re.compile(
        r"\b" + _OPENERS + r"\s+\d{1,2}(?:[:.]\d{2})?\s*(?:am|pm)?\s*"
        r"(?:[-–]|\s+" + _JOINERS + r"\s+)\s*\d{1,2}",
        re.IGNORECASE,
    ),
    # 7-9 (second part a single digit, so not a typo'd HH-MM)
    re.compile(r"(?<![\d:./-])\d{1,2}\s*[-–]\s*\d(?![\d:./-])"),
]

_AMPM_RE = re.compile(
    r"\b(\d{1,2})(?:[:.](\d{2}))?\s*(a\.?m\.?|p\.?m\.?)(?=\W|$)", re.IGNORECASE
)
_H_SEPARATOR_RE = re.compile(r"\b(\d{1,2})h(\d{2})?\b", re.IGNORECASE)
_TYPO_SEPARATOR_RE = re.compile(r"(?<![\d:./-])(\d{1,2})([-.,])(\d{2})(?![\d:./-])")
_SPACE_SEPARATOR_RE = re.compile(r"(?<![\d:./-])(\d{1,2}) ([0-5]\d)(?![\d:./-])")
_OCLOCK_RE = re.compile(
    r"\b(\d{1,2})\s*(?:o'?clock|час(?:а|ов)?|sati|óra|uhr|heures?)\b", re.IGNORECASE
)
_EVENING_RE = re.compile(
    r"\b(\d{1,2})(?::(\d{2}))?(\s*(?:in the evening|tonight|вечера|вечером|uveče|uvece|"
    r"увече|este|abends|du soir|de la tarde|de la noche|di sera))",
    re.IGNORECASE,
)
_SHORT_CLOCK_RE = re.compile(r"(?<![\d:])(\d):(\d{2})\b")
_CLOCK_RE = re.compile(r"\b([01]\d|2[0-3]):([0-5]\d)\b")
_AT_HOUR_RE = re.compile(
    r"\b(?:at|around|by|в|к|u|oko|um|gegen|à|vers|a las|alle|às|о)\s+(\d{1,2})(?!\s*[-–.,:\d])",
    re.IGNORECASE,
)
_NOON_WORDS = {"noon": "12:00", "midday": "12:00", "midnight": "00:00", "полдень": "12:00"}


@dataclass(frozen=True)
class NormalizedMessage:
    """Message text after time normalization."""

    original: str
    text: str
    time_range: Optional[str] = None


def _fmt(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def detect_time_range(text: str) -> Optional[str]:
    """Return the first explicit time range in ``text``, if any."""
    for pattern in _RANGE_PATTERNS:
        match = pattern.search(text)
        if match:
            candidate = match.group(0).strip()
            # "19-20" reads as a typo'd 19:20 unless an opener word precedes it.
            if pattern is _RANGE_PATTERNS[3] or not _TYPO_SEPARATOR_RE.fullmatch(candidate):
                return candidate
    return None


def _replace_ampm(match: re.Match) -> str:
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if hour > 12 or minute > 59:
        return match.group(0)
    is_pm = match.group(3).lower().startswith("p")
    if is_pm and hour != 12:
        hour += 12
    elif not is_pm and hour == 12:
        hour = 0
    return _fmt(hour, minute)


def _replace_h(match: re.Match) -> str:
    hour, minute = int(match.group(1)), int(match.group(2) or 0)
    if hour > 23 or minute > 59:
        return match.group(0)
    return _fmt(hour, minute)


def _replace_typo(match: re.Match) -> str:
    hour, sep, minute = int(match.group(1)), match.group(2), int(match.group(3))
    if hour > 23 or minute > 59:
        return match.group(0)
    # Dots and commas are also decimal and date separators; only accept round minutes.
    if sep in ".," and minute % 5:
        return match.group(0)
    return _fmt(hour, minute)


def _replace_space(match: re.Match) -> str:
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute not in (0, 15, 30, 45):
        return match.group(0)
    return _fmt(hour, minute)


def _replace_oclock(match: re.Match) -> str:
    hour = int(match.group(1))
    if hour > 23:
        return match.group(0)
    return _fmt(hour, 0)


def _replace_evening(match: re.Match) -> str:
    hour, minute = int(match.group(1)), int(match.group(2) or 0)
    if hour > 23 or minute > 59:
        return match.group(0)
    if hour < 12:
        hour += 12
    return _fmt(hour, minute) + match.group(3)


def normalize_time_tokens(text: str) -> NormalizedMessage:
    """Rewrite shorthand clock times to canonical ``HH:MM``.

    Explicit ranges are detected first and the text is then left untouched,
    so a range is never collapsed into a single time.

    Examples:
        >>> normalize_time_tokens("table at 7pm").text
        'table at 19:00'
        >>> normalize_time_tokens("19-20 please").text
        '19:20 please'
        >>> normalize_time_tokens("between 7 and 8").time_range
        'between 7 and 8'
    """
    time_range = detect_time_range(text)
    if time_range is not None:
        return NormalizedMessage(original=text, text=text, time_range=time_range)

    result = _AMPM_RE.sub(_replace_ampm, text)
    result = _H_SEPARATOR_RE.sub(_replace_h, result)
    result = _TYPO_SEPARATOR_RE.sub(_replace_typo, result)
    result = _SPACE_SEPARATOR_RE.sub(_replace_space, result)
    result = _OCLOCK_RE.sub(_replace_oclock, result)
    result = _SHORT_CLOCK_RE.sub(lambda m: _fmt(int(m.group(1)), int(m.group(2))), result)
    result = _EVENING_RE.sub(_replace_evening, result)
    return NormalizedMessage(original=text, text=result)


def extract_clock_times(text: str) -> list[str]:
    """All canonical ``HH:MM`` tokens in already-normalized text."""
    return [_fmt(int(h), int(m)) for h, m in _CLOCK_RE.findall(text)]


def mentioned_hours(text: str) -> set[int]:
    """Bare hours introduced by a preposition ("at 5", "в 7", "um 8")."""
    return {int(h) for h in _AT_HOUR_RE.findall(text) if int(h) <= 24}


def is_time_grounded(candidate: str, normalized_text: str) -> bool:
    """Whether a candidate ``HH:MM`` value is backed by a token in the message."""
    if not _CLOCK_RE.fullmatch(candidate):
        return False
    if candidate in extract_clock_times(normalized_text):
        return True
    hour = int(candidate[:2])
    minute = int(candidate[3:])
    hours = mentioned_hours(normalized_text)
    if minute == 0 and (hour in hours or (hour >= 12 and hour - 12 in hours)):
        return True
    lower = normalized_text.lower()
    return any(word in lower and value == candidate for word, value in _NOON_WORDS.items())


_TIME_TOKEN_PATTERNS = (
    *_RANGE_PATTERNS,
    _AMPM_RE,
    _H_SEPARATOR_RE,
    _OCLOCK_RE,
    _EVENING_RE,
    _AT_HOUR_RE,
    re.compile(r"(?<![\d:./-])\d{1,2}[:.]\d{2}(?![\d:./-])"),
)


def strip_time_tokens(text: str) -> str:
    """Blank out clock times and ranges so their digits are not read as counts.

    Examples:
        >>> strip_time_tokens("for 4 tomorrow at 7pm").split()
        ['for', '4', 'tomorrow', 'at']
    """
    for pattern in _TIME_TOKEN_PATTERNS:
        text = pattern.sub(" ", text)
    return text
