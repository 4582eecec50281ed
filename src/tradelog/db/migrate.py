from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

from tradelog.config.paths import ensure_data_dirs
from tradelog.config.settings import get_settings
from tradelog.db.models import Base
from tradelog.utils.logging import get_logger

logger = get_logger(__name__)

SQLITE_EXTRA_INDEXES = [
    "CREATE INDEX IF NOT EXISTS ix_trades_entry ON trades (entry_date_time)",
    "CREATE INDEX IF NOT EXISTS ix_import_profiles_type_name ON import_profiles (type, name)",
]

_SQLITE_PRAGMAS = (
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)


def _enable_sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_connection, _connection_record):  # pragma: no cover - driver callback
        cursor = dbapi_connection.cursor()
        for statement in _SQLITE_PRAGMAS:
            try:
                cursor.execute(statement)
            except Exception as exc:
                # In-memory databases reject WAL.
                logger.debug("Skipped %s: %s", statement, exc)
        cursor.close()


def _ensure_sqlite_indexes(engine: Engine) -> None:
    if engine.dialect.name != "sqlite":
        return
    with engine.begin() as conn:
        for statement in SQLITE_EXTRA_INDEXES:
            conn.execute(text(statement))


def build_engine(database_url: str | None = None) -> Engine:
    url = database_url or get_settings().database_url

    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        sqlite_path = Path(url.removeprefix("sqlite:///")).expanduser()
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, future=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_pragmas(engine)
    return engine


def migrate(database_url: str | None = None) -> Engine:
    ensure_data_dirs()
    engine = build_engine(database_url=database_url)
    Base.metadata.create_all(bind=engine)
    _ensure_sqlite_indexes(engine)
    logger.info("Database schema ready at %s", engine.url.render_as_string(hide_password=True))
    return engine


if __name__ == "__main__":
    migrate()
