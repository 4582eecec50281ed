from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from tradelog.db.models import Base


@pytest.fixture
def db_session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def tradovate_csv() -> str:
    # Second row sold before it bought: a short.
    return "\n".join(
        [
            "symbol,_priceFormat,_priceFormatType,_tickSize,buyFillId,sellFillId,qty,buyPrice,"
            "sellPrice,pnl,boughtTimestamp,soldTimestamp,duration",
            'MNQZ5,-2,0,0.25,101,102,2,21000.25,21010.75,"$42.00",'
            "11/03/2025 09:31:05,11/03/2025 09:33:56,2min 51sec",
            'MNQZ5,-2,0,0.25,104,103,1,20990.00,21000.00,"$20.00",'
            "11/03/2025 10:15:00,11/03/2025 10:05:00,10min 0sec",
            "",
        ]
    )
