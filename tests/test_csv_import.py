from __future__ import annotations

from datetime import datetime

import pytest

from tradelog.db.models import Direction
from tradelog.ingest.csv_import import (
    PREVIEW_COLUMNS,
    ParsedTrade,
    compute_derived_metrics,
    contract_multiplier,
    contract_root,
    detect_headers,
    parse_import_issue,
    parse_with_profile,
    parse_with_report,
    preview_import,
)
from tradelog.ingest.profiles import BUILTIN_PROFILES, ImportProfile
from tradelog.utils.dates import parse_iso

JOURNAL_PROFILE = ImportProfile(
    key="journal",
    name="Journal export",
    column_mappings={
        "Market": "market",
        "Side": "direction",
        "Qty": "contracts",
        "Entry": "entryPrice",
        "Exit": "exitPrice",
        "Stop": "plannedSL",
        "Target": "plannedTP",
        "MAE": "maePrice",
        "MFE": "mfePrice",
        "Opened": "entryDateTime",
        "PnL": "pnl",
        "Setup": "setup",
        "Notes": None,
    },
    date_format="YYYY-MM-DD HH:mm:ss",
)

JOURNAL_HEADER = "Market,Side,Qty,Entry,Exit,Stop,Target,MAE,MFE,Opened,PnL,Setup,Notes"


def _journal_csv(*rows: str) -> str:
    return "\n".join([JOURNAL_HEADER, *rows])


def test_concrete_long_scenario_metrics() -> None:
    csv_text = _journal_csv("NQ,Long,1,100,108,95,110,97,109,2024-03-05 09:30:00,160,ORB,skip me")

    [trade] = parse_with_profile(csv_text, JOURNAL_PROFILE)

    assert trade.direction == Direction.LONG
    assert trade.risk == pytest.approx(5 * 1 * 20)
    assert trade.planned_rr == pytest.approx(2.0)
    assert trade.achieved_r == pytest.approx(1.6)
    assert trade.mae_r == pytest.approx(0.6)
    assert trade.heat_percent == pytest.approx(60.0)
    assert trade.mfe_r == pytest.approx(1.8)
    assert trade.profit_capture_percent == pytest.approx(88.888, rel=1e-3)
    assert trade.win is True
    assert trade.setup == "ORB"
    assert trade.notes_raw is None


def test_short_metrics_are_direction_aware() -> None:
    trade = ParsedTrade(
        market="ES",
        direction=Direction.SHORT,
        contracts=2,
        entry_price=100.0,
        exit_price=92.0,
        planned_sl=105.0,
        mae_price=103.0,
        mfe_price=98.0,
        pnl=-5.0,
    )

    compute_derived_metrics(trade)

    assert trade.risk == pytest.approx(5 * 2 * 50)
    assert trade.achieved_r == pytest.approx(1.6)
    assert trade.mae_r == pytest.approx(0.6)
    assert trade.mfe_r == pytest.approx(0.4)
    assert trade.profit_capture_percent == pytest.approx(400.0)
    assert trade.win is False
    assert trade.planned_rr is None


def test_metrics_without_stop_only_set_win() -> None:
    trade = compute_derived_metrics(
        ParsedTrade(market="CL", direction=Direction.LONG, contracts=1, entry_price=80.0, pnl=12.0)
    )

    assert trade.win is True
    assert trade.risk is None
    assert trade.achieved_r is None


def test_zero_risk_keeps_planned_rr_at_zero() -> None:
    trade = compute_derived_metrics(
        ParsedTrade(
            market="NQ",
            direction=Direction.LONG,
            contracts=1,
            entry_price=100.0,
            planned_sl=100.0,
            planned_tp=110.0,
            exit_price=105.0,
        )
    )

    assert trade.risk == 0
    assert trade.planned_rr == 0.0
    assert trade.achieved_r is None


@pytest.mark.parametrize(
    ("market", "root", "multiplier"),
    [
        ("NQ", "NQ", 20),
        ("MNQZ5", "MNQ", 2),
        ("/ESH4", "ES", 50),
        ("NQ 03-24", "NQ", 20),
        ("CME_MINI:MES1!", "MES", 5),
        ("GCZ24", "GC", 10),
        ("ZB", "ZB", 20),
    ],
)
def test_contract_multiplier_resolves_roots(market: str, root: str, multiplier: float) -> None:
    assert contract_root(market) == root
    assert contract_multiplier(market) == multiplier


def test_custom_multipliers_are_injected() -> None:
    trade = ParsedTrade(
        market="RTY", direction=Direction.LONG, contracts=1, entry_price=2000.0, planned_sl=1990.0
    )
    compute_derived_metrics(trade, {"RTY": 50})
    assert trade.risk == pytest.approx(500.0)


def test_rows_missing_required_values_are_dropped() -> None:
    csv_text = _journal_csv(
        "NQ,Short,1,,,,,,,2024-03-05 09:30:00,0,,",
        'ES,Short,2,5000,4990,,,,,2024-03-05 10:30:00,"$1,000.00",,',
        "NQ,Long",
        ",Long,1,100,101,,,,,2024-03-05 11:00:00,20,,",
    )

    trades, issues = parse_with_report(csv_text, JOURNAL_PROFILE)

    assert [trade.market for trade in trades] == ["ES"]
    assert trades[0].contracts == 2
    assert trades[0].direction == Direction.SHORT
    assert len(parse_with_profile(csv_text, JOURNAL_PROFILE)) == 1
    assert "[WARNING] Row 1: skipped, missing entryPrice" in issues
    assert "[WARNING] Row 3: skipped, missing entryDateTime, entryPrice" in issues
    assert "[WARNING] Row 4: skipped, missing market" in issues


def test_row_numbers_count_blank_lines_below_the_header(fixed_now: datetime) -> None:
    csv_text = "\n" + _journal_csv(
        "ES,Short,2,5000,4990,,,,,2024-03-05 10:30:00,25,,",
        "",
        "  ",
        "NQ,Long,1,,,,,,,2024-03-05 11:00:00,0,,",
    )

    trades, issues = parse_with_report(csv_text, JOURNAL_PROFILE, now=fixed_now)

    assert [trade.market for trade in trades] == ["ES"]
    assert issues == ["[WARNING] Row 4: skipped, missing entryPrice"]


def test_duplicate_field_sources_settle_on_present_columns() -> None:
    profile = ImportProfile(
        key="avg",
        name="Avg price export",
        column_mappings={
            "Symbol": "market",
            "Side": "direction",
            "Qty": "contracts",
            "Entry Price": "entryPrice",
            "Avg Price": "entryPrice",
            "Time": "entryDateTime",
        },
        date_format="YYYY-MM-DD HH:mm:ss",
    )

    only_first = "Symbol,Side,Qty,Entry Price,Time\nNQ,Long,1,18000.5,2024-03-05 09:30:00"
    both = "Symbol,Avg Price,Side,Qty,Entry Price,Time\nNQ,18001,Long,1,18000.5,2024-03-05 09:30:00"

    [trade] = parse_with_profile(only_first, profile)
    assert trade.entry_price == pytest.approx(18000.5)
    [trade] = parse_with_profile(both, profile)
    assert trade.entry_price == pytest.approx(18001.0)


def test_report_flags_degraded_cells(fixed_now: datetime) -> None:
    csv_text = _journal_csv("NQ,Long,1,100,abc,,,,,someday,50,,")

    trades, issues = parse_with_report(csv_text, JOURNAL_PROFILE, now=fixed_now)

    assert trades[0].exit_price == 0.0
    assert trades[0].entry_date_time == "2030-01-01T12:00:00.000Z"
    assert "[INFO] Row 1: exitPrice 'abc' is not a number; using 0" in issues
    assert parse_import_issue(issues[-1])[0] == "WARNING"
    assert parse_import_issue("legacy text") == ("WARNING", "legacy text")


def test_tradovate_profile_infers_direction_from_fill_order(tradovate_csv: str) -> None:
    long_trade, short_trade = parse_with_profile(tradovate_csv, BUILTIN_PROFILES["tradovate"])

    assert long_trade.direction == Direction.LONG
    assert long_trade.market == "MNQZ5"
    assert long_trade.contracts == 2
    assert long_trade.entry_price == pytest.approx(21000.25)
    assert long_trade.exit_price == pytest.approx(21010.75)
    assert long_trade.pnl == pytest.approx(42.0)
    assert long_trade.duration_seconds == 171
    assert long_trade.win is True

    assert short_trade.direction == Direction.SHORT
    assert short_trade.entry_price == pytest.approx(21000.0)
    assert short_trade.exit_price == pytest.approx(20990.0)
    assert short_trade.duration_seconds == 600
    entry_at = parse_iso(short_trade.entry_date_time).astimezone()
    exit_at = parse_iso(short_trade.exit_time).astimezone()
    assert (entry_at.hour, entry_at.minute) == (10, 5)
    assert (exit_at.hour, exit_at.minute) == (10, 15)
    assert (entry_at.month, entry_at.day) == (11, 3)


def test_mismatched_profile_yields_no_trades(tradovate_csv: str) -> None:
    trades, issues = parse_with_report(tradovate_csv, BUILTIN_PROFILES["ninjatrader"])

    assert trades == []
    assert issues[0] == "[WARNING] Header: no profile columns found in the CSV header"


def test_header_only_or_empty_input() -> None:
    assert parse_with_profile("", JOURNAL_PROFILE) == []
    assert parse_with_profile(JOURNAL_HEADER + "\n\n", JOURNAL_PROFILE) == []
    assert detect_headers("") == []


def test_detect_headers_with_semicolons() -> None:
    assert detect_headers('Date;"Symbol";Qty\n1;2;3', ";") == ["Date", "Symbol", "Qty"]


def test_preview_exposes_found_count_and_frame(tradovate_csv: str) -> None:
    preview = preview_import(tradovate_csv, BUILTIN_PROFILES["tradovate"])

    assert preview.found == 2
    assert preview.headers[0] == "symbol"
    frame = preview.to_frame()
    assert list(frame.columns) == PREVIEW_COLUMNS
    assert frame["direction"].tolist() == ["Long", "Short"]


def test_to_record_drops_unset_fields() -> None:
    record = ParsedTrade(
        market="NQ", direction=Direction.SHORT, contracts=1, entry_price=1.0, entry_date_time="x"
    ).to_record()

    assert record["direction"] == "Short"
    assert record["status"] == "CLOSED"
    assert record["tags"] == []
    assert "exit_price" not in record
