"""Session-bound stores for trades and custom import profiles."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from tradelog.config.settings import get_settings
from tradelog.db.migrate import build_engine
from tradelog.db.models import (
    TRADE_COLUMNS,
    Direction,
    ImportProfileRecord,
    Trade,
    TradeStatus,
)
from tradelog.ingest.csv_import import CONTRACT_MULTIPLIERS, ParsedTrade, compute_derived_metrics
from tradelog.ingest.profiles import ImportProfile, resolve_profile, validate_profile
from tradelog.ingest.tokenizer import normalize_delimiter
from tradelog.utils.dates import parse_iso, utc_now

ALL_ACCOUNTS = "all"
_STORE_MANAGED = frozenset({"id", "created_at", "updated_at"})
DERIVED_COLUMNS = (
    "risk",
    "planned_rr",
    "achieved_r",
    "win",
    "mae_r",
    "mfe_r",
    "heat_percent",
    "profit_capture_percent",
)
_METRIC_INPUTS = (
    "market",
    "direction",
    "contracts",
    "entry_price",
    "exit_price",
    "pnl",
    "planned_sl",
    "planned_tp",
    "mae_price",
    "mfe_price",
)


class TradeNotFoundError(LookupError):
    pass


class ImportProfileNotFoundError(LookupError):
    pass


@contextmanager
def session_scope(engine: Engine):
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_engine() -> Engine:
    return build_engine()


def _coerce_columns(data: Mapping[str, Any]) -> dict[str, Any]:
    values = {
        key: value
        for key, value in data.items()
        if key in TRADE_COLUMNS and key not in _STORE_MANAGED
    }
    if values.get("direction") is not None:
        values["direction"] = Direction(values["direction"])
    if values.get("status") is not None:
        values["status"] = TradeStatus(values["status"])
    for key in ("tags", "mistakes", "images"):
        if key in values:
            values[key] = list(values[key] or [])
    return values


def _duration_between(entry: Any, exit_: Any) -> int | None:
    entry_at = parse_iso(entry)
    exit_at = parse_iso(exit_)
    if entry_at is None or exit_at is None or exit_at < entry_at:
        return None
    return int((exit_at - entry_at).total_seconds())


def _refresh_metrics(trade: Trade, multipliers: Mapping[str, float]) -> None:
    # Derived columns follow the stored prices.
    snapshot = ParsedTrade(**{name: getattr(trade, name) for name in _METRIC_INPUTS})
    compute_derived_metrics(snapshot, multipliers)
    for name in DERIVED_COLUMNS:
        setattr(trade, name, getattr(snapshot, name))


class TradeStore:
    def __init__(self, session: Session, multipliers: Mapping[str, float] | None = None):
        self.session = session
        self.multipliers = multipliers or CONTRACT_MULTIPLIERS

    def list(self, account_id: str | None = None) -> list[Trade]:
        stmt = select(Trade).order_by(Trade.entry_date_time.desc(), Trade.id)
        if account_id and account_id != ALL_ACCOUNTS:
            stmt = stmt.where(Trade.account_id == account_id)
        return list(self.session.scalars(stmt).all())

    def get(self, trade_id: str) -> Trade | None:
        return self.session.get(Trade, trade_id)

    def create(self, data: Mapping[str, Any]) -> Trade:
        values = _coerce_columns(data)
        values.setdefault("account_id", None)
        if not values["account_id"]:
            values["account_id"] = get_settings().default_account_id
        if values.get("duration_seconds") is None:
            values["duration_seconds"] = _duration_between(
                values.get("entry_date_time"), values.get("exit_time")
            )

        trade = Trade(**values)
        _refresh_metrics(trade, self.multipliers)
        self.session.add(trade)
        self.session.flush()
        return trade

    def update(self, trade_id: str, changes: Mapping[str, Any]) -> Trade:
        trade = self.get(trade_id)
        if trade is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found.")
        values = _coerce_columns(changes)
        for key, value in values.items():
            setattr(trade, key, value)

        times_changed = "entry_date_time" in values or "exit_time" in values
        if times_changed and "duration_seconds" not in values:
            duration = _duration_between(trade.entry_date_time, trade.exit_time)
            if duration is not None:
                trade.duration_seconds = duration
        _refresh_metrics(trade, self.multipliers)
        trade.updated_at = utc_now().replace(tzinfo=None)
        self.session.flush()
        return trade

    def delete(self, trade_id: str) -> bool:
        trade = self.get(trade_id)
        if trade is None:
            return False
        self.session.delete(trade)
        self.session.flush()
        return True


def _profile_from_record(record: ImportProfileRecord) -> ImportProfile:
    return ImportProfile(
        key=record.id,
        name=record.name,
        column_mappings=dict(record.column_mappings or {}),
        delimiter=record.delimiter or ",",
        date_format=record.date_format or "",
    )


def _require_valid(profile: ImportProfile) -> None:
    errors = validate_profile(profile)
    if errors:
        raise ValueError(" ".join(errors))


class ImportProfileStore:
    def __init__(self, session: Session):
        self.session = session

    def list(self) -> list[ImportProfile]:
        records = self.session.scalars(
            select(ImportProfileRecord).order_by(ImportProfileRecord.name, ImportProfileRecord.id)
        ).all()
        return [_profile_from_record(record) for record in records]

    def get(self, profile_id: str) -> ImportProfile | None:
        record = self.session.get(ImportProfileRecord, profile_id)
        return _profile_from_record(record) if record is not None else None

    def create(
        self,
        name: str,
        column_mappings: Mapping[str, str | None],
        date_format: str | None = None,
        delimiter: str = ",",
    ) -> str:
        candidate = ImportProfile(
            key="new",
            name=name.strip(),
            column_mappings=dict(column_mappings),
            delimiter=delimiter,
            date_format=date_format or "",
        )
        _require_valid(candidate)

        record = ImportProfileRecord(
            name=candidate.name,
            type="custom",
            column_mappings=dict(candidate.column_mappings),
            date_format=date_format or None,
            delimiter=normalize_delimiter(delimiter),
        )
        self.session.add(record)
        self.session.flush()
        return record.id

    def update(
        self,
        profile_id: str,
        *,
        name: str | None = None,
        column_mappings: Mapping[str, str | None] | None = None,
        date_format: str | None = None,
        delimiter: str | None = None,
    ) -> ImportProfile:
        record = self.session.get(ImportProfileRecord, profile_id)
        if record is None:
            raise ImportProfileNotFoundError(f"Import profile {profile_id} not found.")

        candidate = ImportProfile(
            key=record.id,
            name=(name if name is not None else record.name).strip(),
            column_mappings=dict(
                column_mappings if column_mappings is not None else record.column_mappings or {}
            ),
            delimiter=delimiter if delimiter is not None else record.delimiter,
            date_format=date_format if date_format is not None else record.date_format or "",
        )
        _require_valid(candidate)

        record.name = candidate.name
        record.column_mappings = dict(candidate.column_mappings)
        record.delimiter = normalize_delimiter(candidate.delimiter)
        record.date_format = candidate.date_format or None
        record.updated_at = utc_now().replace(tzinfo=None)
        self.session.flush()
        return _profile_from_record(record)

    def delete(self, profile_id: str) -> bool:
        record = self.session.get(ImportProfileRecord, profile_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.flush()
        return True

    def resolve(self, reference: str) -> ImportProfile:
        """Built-in key (``tradovate``) or ``custom:<id>``."""
        custom = {profile.key: profile for profile in self.list()}
        return resolve_profile(reference, custom)
