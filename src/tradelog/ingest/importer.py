from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from tradelog.config.settings import get_settings
from tradelog.db.repository import TradeStore
from tradelog.ingest.csv_import import parse_with_report
from tradelog.ingest.dedupe import reconcile
from tradelog.ingest.profiles import ImportProfile
from tradelog.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ImportSummary:
    found: int = 0
    created: int = 0
    updated: int = 0
    issues: list[str] = field(default_factory=list)
    dry_run: bool = False


async def import_trades_csv_async(
    session: Session,
    csv_text: str,
    profile: ImportProfile,
    *,
    account_id: str | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
    multipliers: Mapping[str, float] | None = None,
) -> ImportSummary:
    """Parse ``csv_text`` and merge it into the account's trade history.

    Awaitable form for callers already running an event loop.

    With ``dry_run`` the match plan is computed against the stored trades but
    nothing is written; the returned counts are what a real run would do.
    Commit/rollback belongs to the caller's session scope.
    """
    settings = get_settings()
    account = account_id or settings.default_account_id
    store = TradeStore(session, multipliers)

    candidates, issues = parse_with_report(csv_text, profile, multipliers=multipliers, now=now)
    summary = ImportSummary(found=len(candidates), issues=issues, dry_run=dry_run)
    if not candidates:
        logger.info("No trades found using profile '%s' (%d issues)", profile.name, len(issues))
        return summary

    existing = store.list(account)

    def _update(trade_id: str, changes: dict[str, Any]) -> None:
        if not dry_run:
            store.update(trade_id, changes)

    def _create(payload: dict[str, Any]) -> None:
        if not dry_run:
            store.create({**payload, "account_id": account})

    result = await reconcile(
        candidates,
        existing,
        _update,
        _create,
        window_minutes=settings.match_window_minutes,
    )
    summary.created = result.created
    summary.updated = result.updated

    logger.info(
        "%s %d trades into %s with profile '%s': created=%d updated=%d issues=%d",
        "Planned" if dry_run else "Imported",
        summary.found,
        account,
        profile.name,
        summary.created,
        summary.updated,
        len(issues),
    )
    return summary


def import_trades_csv(
    session: Session,
    csv_text: str,
    profile: ImportProfile,
    *,
    account_id: str | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
    multipliers: Mapping[str, float] | None = None,
) -> ImportSummary:
    """Blocking form of :func:`import_trades_csv_async`.

    Runs its own event loop, so it raises ``RuntimeError`` when called from a
    coroutine; await ``import_trades_csv_async`` there instead.
    """
    return asyncio.run(
        import_trades_csv_async(
            session,
            csv_text,
            profile,
            account_id=account_id,
            dry_run=dry_run,
            now=now,
            multipliers=multipliers,
        )
    )
