from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SqlEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class Direction(str, Enum):
    LONG = "Long"
    SHORT = "Short"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Trade(Base):
    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_account_entry", "account_id", "entry_date_time"),
        Index("ix_trades_market_direction_entry", "market", "direction", "entry_date_time"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    market: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    direction: Mapped[Direction] = mapped_column(
        SqlEnum(Direction, native_enum=False, values_callable=_enum_values), nullable=False
    )
    # ISO-8601 strings, kept verbatim as produced by the importer.
    entry_date_time: Mapped[str] = mapped_column(String(40), nullable=False)
    exit_time: Mapped[str | None] = mapped_column(String(40), nullable=True)

    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    exit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    contracts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    planned_sl: Mapped[float | None] = mapped_column(Float, nullable=True)
    planned_tp: Mapped[float | None] = mapped_column(Float, nullable=True)
    risk: Mapped[float | None] = mapped_column(Float, nullable=True)
    pnl: Mapped[float | None] = mapped_column(Float, nullable=True)
    planned_rr: Mapped[float | None] = mapped_column(Float, nullable=True)
    achieved_r: Mapped[float | None] = mapped_column(Float, nullable=True)

    setup: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes_raw: Mapped[str | None] = mapped_column(Text, nullable=True)

    mae_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    mfe_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    mae_r: Mapped[float | None] = mapped_column(Float, nullable=True)
    mfe_r: Mapped[float | None] = mapped_column(Float, nullable=True)
    heat_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    profit_capture_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    win: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    mistakes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    session: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[TradeStatus] = mapped_column(
        SqlEnum(TradeStatus, native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=TradeStatus.CLOSED,
    )
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class ImportProfileRecord(Base):
    __tablename__ = "import_profiles"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="custom")
    column_mappings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    date_format: Mapped[str | None] = mapped_column(String(64), nullable=True)
    delimiter: Mapped[str] = mapped_column(String(4), nullable=False, default=",")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


TRADE_COLUMNS = frozenset(column.key for column in Trade.__table__.columns)
