from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any

import pandas as pd

from tradelog.db.models import Direction
from tradelog.utils.dates import as_utc, to_iso_utc, utc_now

_CURRENCY_NOISE_RE = re.compile(r"[$€£,\s]")
_LEADING_INT_RE = re.compile(r"^[+-]?\d+")
_DATE_SPLIT_RE = re.compile(r"[/\-.\sT,:]+")
_CLOCK_RE = re.compile(r"^(\d+):(\d{1,2})(?::(\d{1,2}))?$")

_DURATION_UNITS = (
    (re.compile(r"(\d+)\s*h(?:ours?|rs?)?\b", re.IGNORECASE), 3600),
    (re.compile(r"(\d+)\s*min", re.IGNORECASE), 60),
    (re.compile(r"(\d+)\s*sec", re.IGNORECASE), 1),
)

LONG_TOKENS = frozenset({"long", "buy", "b", "1"})
# "0" reads as Short even though "1" reads as Long; broker exports rely on it.
SHORT_TOKENS = frozenset({"short", "sell", "s", "-1", "0"})


def try_parse_number(value: Any) -> float | None:
    if value is None:
        return None
    text = _CURRENCY_NOISE_RE.sub("", str(value))
    if not text:
        return None
    if text.startswith("(") and text.endswith(")"):
        text = f"-{text[1:-1]}"
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_number(value: Any) -> float:
    number = try_parse_number(value)
    return 0.0 if number is None else number


def parse_int(value: Any, default: int | None = None) -> int | None:
    if value is None:
        return default
    match = _LEADING_INT_RE.match(str(value).strip())
    if not match:
        return default
    return int(match.group(0))


def parse_contracts(value: Any) -> int:
    return abs(parse_int(value, 0) or 1)


def parse_direction(value: Any) -> Direction:
    text = str(value if value is not None else "").strip().lower()
    if text in LONG_TOKENS:
        return Direction.LONG
    if text in SHORT_TOKENS:
        return Direction.SHORT
    return Direction.LONG


def parse_duration_seconds(value: Any) -> int:
    text = str(value if value is not None else "").strip()
    if not text:
        return 0
    if text.isdigit():
        return int(text)

    clock = _CLOCK_RE.match(text)
    if clock:
        first, second, third = clock.groups()
        if third is None:
            return int(first) * 60 + int(second)
        return int(first) * 3600 + int(second) * 60 + int(third)

    total = 0
    matched = False
    for pattern, scale in _DURATION_UNITS:
        found = pattern.search(text)
        if found:
            total += int(found.group(1)) * scale
            matched = True
    if matched:
        return total
    return parse_int(text, 0) or 0


def _native_datetime(text: str) -> datetime | None:
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed) or not isinstance(parsed, pd.Timestamp):
        return None
    return parsed.to_pydatetime()


def _resolve_date_order(
    numbers: list[int | None], first_token: str, date_format: str | None
) -> tuple[int | None, int | None, int | None]:
    lower_format = (date_format or "").lower()
    if all(letter in lower_format for letter in "ymd"):
        order = sorted("dmy", key=lower_format.index)
        values = dict(zip(order, numbers))
        return values["y"], values["m"] or 1, values["d"] or 1
    if len(first_token) == 4:
        year, month, day = numbers
    else:
        month, day, year = numbers
    return year, month, day


def try_parse_date(value: Any, date_format: str | None = None) -> datetime | None:
    """Parse a broker timestamp into an aware UTC datetime.

    Only the relative order of ``y``, ``m`` and ``d`` in ``date_format`` matters;
    separators are ignored. Any numeric groups after the date are read as
    hour, minute and second in that order. Wall-clock values are local time.
    """
    text = str(value if value is not None else "").strip()
    if not text:
        return None

    if "T" in text:
        native = _native_datetime(text)
        if native is not None:
            return as_utc(native)

    parts = [part for part in _DATE_SPLIT_RE.split(text) if part]
    if len(parts) < 3:
        return None

    numbers = [parse_int(part) for part in parts]
    year, month, day = _resolve_date_order(numbers[:3], parts[0], date_format)
    time_numbers = (numbers[3:6] + [0, 0, 0])[:3]
    if year is None or month is None or day is None or None in time_numbers:
        return None
    if year < 100:
        year += 2000

    hour, minute, second = time_numbers
    try:
        return as_utc(datetime(year, month, day, hour, minute, second))
    except (ValueError, OverflowError, OSError):
        return None


def parse_date_string(
    value: Any, date_format: str | None = None, *, now: datetime | None = None
) -> str:
    parsed = try_parse_date(value, date_format)
    if parsed is None:
        parsed = now or utc_now()
    return to_iso_utc(parsed)
