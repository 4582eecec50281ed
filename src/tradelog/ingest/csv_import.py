from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

import pandas as pd

from tradelog.db.models import Direction, TradeStatus
from tradelog.ingest.profiles import CANONICAL_FIELDS, FIELD_KINDS, ImportProfile
from tradelog.ingest.tokenizer import (
    normalize_delimiter,
    numbered_lines,
    split_lines,
    tokenize_line,
)
from tradelog.ingest.validators import (
    parse_contracts,
    parse_date_string,
    parse_direction,
    parse_duration_seconds,
    parse_number,
    try_parse_date,
    try_parse_number,
)
from tradelog.utils.dates import parse_iso
from tradelog.utils.logging import get_logger

logger = get_logger(__name__)

# Dollar value of one full point per contract.
CONTRACT_MULTIPLIERS: Mapping[str, float] = MappingProxyType(
    {"NQ": 20, "ES": 50, "MNQ": 2, "MES": 5, "CL": 10, "GC": 10}
)
DEFAULT_CONTRACT_MULTIPLIER = 20

PREVIEW_COLUMNS = [
    "entry_date_time",
    "market",
    "direction",
    "contracts",
    "entry_price",
    "exit_price",
    "pnl",
    "risk",
    "achieved_r",
    "win",
]

_FUTURES_MONTH_RE = re.compile(r"^([A-Z]{1,4}?)[FGHJKMNQUVXZ]\d{1,2}$")
_CONTINUOUS_RE = re.compile(r"\d*!$")
_ISSUE_RE = re.compile(r"^\[(INFO|WARNING|ERROR)\]\s*(.*)$", re.DOTALL)


@dataclass
class ParsedTrade:
    market: str | None = None
    direction: Direction | None = None
    contracts: int | None = None
    entry_price: float | None = None
    entry_date_time: str | None = None
    exit_price: float | None = None
    exit_time: str | None = None
    pnl: float | None = None
    duration_seconds: int | None = None
    setup: str | None = None
    notes_raw: str | None = None
    planned_sl: float | None = None
    planned_tp: float | None = None
    mae_price: float | None = None
    mfe_price: float | None = None
    status: TradeStatus = TradeStatus.CLOSED
    tags: list[str] = field(default_factory=list)

    risk: float | None = None
    planned_rr: float | None = None
    achieved_r: float | None = None
    win: bool | None = None
    mae_r: float | None = None
    mfe_r: float | None = None
    heat_percent: float | None = None
    profit_capture_percent: float | None = None

    def missing_required(self) -> list[str]:
        missing: list[str] = []
        if not self.market:
            missing.append("market")
        if self.direction is None:
            missing.append("direction")
        if not self.entry_date_time:
            missing.append("entryDateTime")
        if self.entry_price is None:
            missing.append("entryPrice")
        if not self.contracts:
            missing.append("contracts")
        return missing

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            record[key] = value.value if isinstance(value, Enum) else value
        return record


def contract_root(market: str) -> str:
    """``MNQZ5`` -> ``MNQ``, ``NQ 03-24`` -> ``NQ``, ``CME_MINI:NQ1!`` -> ``NQ``."""
    text = market.strip().upper().rsplit(":", 1)[-1]
    pieces = text.split()
    text = pieces[0] if pieces else text
    text = _CONTINUOUS_RE.sub("", text.lstrip("/"))
    match = _FUTURES_MONTH_RE.match(text)
    return match.group(1) if match else text


def contract_multiplier(
    market: str, multipliers: Mapping[str, float] = CONTRACT_MULTIPLIERS
) -> float:
    if market in multipliers:
        return multipliers[market]
    return multipliers.get(contract_root(market), DEFAULT_CONTRACT_MULTIPLIER)


def compute_derived_metrics(
    trade: ParsedTrade, multipliers: Mapping[str, float] = CONTRACT_MULTIPLIERS
) -> ParsedTrade:
    """Fill risk, R-multiple and excursion metrics in place.

    Zero-valued prices count as absent: blank numeric cells coerce to 0.
    Everything except ``win`` needs a planned stop.
    """
    if not (trade.entry_price and trade.contracts and trade.market):
        return trade

    is_long = trade.direction == Direction.LONG
    sign = 1 if is_long else -1
    entry = trade.entry_price

    if trade.pnl is not None:
        trade.win = trade.pnl > 0

    if not trade.planned_sl:
        return trade

    risk_points = abs(entry - trade.planned_sl)
    trade.risk = risk_points * trade.contracts * contract_multiplier(trade.market, multipliers)

    if trade.planned_tp:
        reward_points = abs(trade.planned_tp - entry)
        trade.planned_rr = reward_points / risk_points if risk_points > 0 else 0.0

    if risk_points <= 0:
        return trade

    if trade.exit_price:
        trade.achieved_r = (trade.exit_price - entry) * sign / risk_points

    if trade.mae_price:
        adverse_points = (entry - trade.mae_price) * sign
        trade.mae_r = max(0.0, adverse_points / risk_points)
        trade.heat_percent = max(0.0, adverse_points / risk_points * 100)

    if trade.mfe_price:
        favorable_points = (trade.mfe_price - entry) * sign
        trade.mfe_r = favorable_points / risk_points
        if trade.exit_price and favorable_points > 0:
            realized_points = (trade.exit_price - entry) * sign
            trade.profit_capture_percent = realized_points / favorable_points * 100

    return trade


def format_issue(severity: str, message: str) -> str:
    return f"[{severity}] {message}"


def parse_import_issue(issue: str) -> tuple[str, str]:
    match = _ISSUE_RE.match(issue.strip())
    if match is None:
        return "WARNING", issue.strip()
    return match.group(1), match.group(2)


def detect_headers(csv_text: str, delimiter: str = ",") -> list[str]:
    lines = split_lines(csv_text)
    if not lines:
        return []
    return tokenize_line(lines[0], normalize_delimiter(delimiter))


def _column_index(headers: list[str], profile: ImportProfile) -> list[tuple[int, str]]:
    # Only columns present in the header compete for a field; the later mapping wins.
    by_field: dict[str, int] = {}
    for source, canonical in profile.field_mappings():
        if source in headers:
            by_field[canonical] = headers.index(source)
    return sorted((column, canonical) for canonical, column in by_field.items())


def _assign(
    trade: ParsedTrade,
    canonical: str,
    value: str,
    profile: ImportProfile,
    now: datetime | None,
    issues: list[str],
    row_number: int,
) -> None:
    kind = FIELD_KINDS[canonical]
    if not value and kind in ("number", "date"):
        # Blank cells leave the field absent; a blank entry price rejects the row.
        return
    if kind == "number":
        coerced: Any = parse_number(value)
        if value and try_parse_number(value) is None:
            issues.append(
                format_issue("INFO", f"Row {row_number}: {canonical} '{value}' is not a number; using 0")
            )
    elif kind == "date":
        coerced = parse_date_string(value, profile.date_format, now=now)
        if try_parse_date(value, profile.date_format) is None:
            issues.append(
                format_issue(
                    "WARNING",
                    f"Row {row_number}: {canonical} '{value}' is not a valid date; using current time",
                )
            )
    elif kind == "direction":
        coerced = parse_direction(value)
    elif kind == "contracts":
        coerced = parse_contracts(value)
    elif kind == "duration":
        coerced = parse_duration_seconds(value)
    else:
        coerced = value
    setattr(trade, CANONICAL_FIELDS[canonical], coerced)


def _infer_direction_from_fills(trade: ParsedTrade) -> None:
    # Entry columns hold the buy side; selling first means the position was short.
    entry_at = parse_iso(trade.entry_date_time)
    exit_at = parse_iso(trade.exit_time)
    if entry_at is not None and exit_at is not None and exit_at < entry_at:
        trade.direction = Direction.SHORT
        trade.entry_price, trade.exit_price = trade.exit_price, trade.entry_price
        trade.entry_date_time, trade.exit_time = trade.exit_time, trade.entry_date_time
    else:
        trade.direction = Direction.LONG


def parse_with_report(
    csv_text: str,
    profile: ImportProfile,
    *,
    multipliers: Mapping[str, float] | None = None,
    now: datetime | None = None,
) -> tuple[list[ParsedTrade], list[str]]:
    delimiter = normalize_delimiter(profile.delimiter)
    lines = numbered_lines(csv_text)
    if len(lines) < 2:
        return [], []

    header_line, header_text = lines[0]
    headers = tokenize_line(header_text, delimiter)
    # Row numbers count every line below the header, blank ones included.
    data_rows = [
        (number - header_line, tokenize_line(text, delimiter)) for number, text in lines[1:]
    ]
    columns = _column_index(headers, profile)
    issues: list[str] = []
    if not columns:
        issues.append(format_issue("WARNING", "Header: no profile columns found in the CSV header"))

    infer_direction = profile.infer_direction and all(
        canonical != "direction" for _, canonical in columns
    )
    trades: list[ParsedTrade] = []
    for row_number, cells in data_rows:
        trade = ParsedTrade()
        for column, canonical in columns:
            value = cells[column] if column < len(cells) else ""
            _assign(trade, canonical, value, profile, now, issues, row_number)

        if infer_direction:
            _infer_direction_from_fills(trade)

        compute_derived_metrics(trade, multipliers or CONTRACT_MULTIPLIERS)

        missing = trade.missing_required()
        if missing:
            issues.append(
                format_issue("WARNING", f"Row {row_number}: skipped, missing {', '.join(missing)}")
            )
            continue
        trades.append(trade)

    dropped = len(data_rows) - len(trades)
    if dropped:
        logger.debug("Dropped %d of %d rows using profile '%s'", dropped, len(data_rows), profile.name)
    return trades, issues


def parse_with_profile(
    csv_text: str,
    profile: ImportProfile,
    *,
    multipliers: Mapping[str, float] | None = None,
    now: datetime | None = None,
) -> list[ParsedTrade]:
    trades, _ = parse_with_report(csv_text, profile, multipliers=multipliers, now=now)
    return trades


@dataclass(frozen=True)
class ImportPreview:
    headers: list[str]
    trades: list[ParsedTrade]
    issues: list[str]

    @property
    def found(self) -> int:
        return len(self.trades)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([trade.to_record() for trade in self.trades], columns=PREVIEW_COLUMNS)


def preview_import(
    csv_text: str,
    profile: ImportProfile,
    *,
    multipliers: Mapping[str, float] | None = None,
    now: datetime | None = None,
) -> ImportPreview:
    trades, issues = parse_with_report(csv_text, profile, multipliers=multipliers, now=now)
    return ImportPreview(
        headers=detect_headers(csv_text, profile.delimiter),
        trades=trades,
        issues=issues,
    )
