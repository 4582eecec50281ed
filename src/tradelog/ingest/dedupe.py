"""Merge imported candidates into an existing trade history.

A candidate matches an existing trade with the same market and direction whose
entry time is less than ``window_minutes`` away. Each existing trade can absorb
at most one candidate per batch; candidates are written strictly one at a time,
in input order, so two rows can never race for the same trade.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from tradelog.db.models import TradeStatus
from tradelog.utils.dates import parse_iso
from tradelog.utils.logging import get_logger

logger = get_logger(__name__)

IMPORTED_TAG = "Imported"
MATCH_WINDOW_MINUTES = 60

UpdateFn = Callable[[str, dict[str, Any]], Any]
CreateFn = Callable[[dict[str, Any]], Any]


@dataclass
class ReconcileResult:
    created: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated


class ReconcileError(RuntimeError):
    """A store write failed mid-batch. Earlier writes are not rolled back."""

    def __init__(self, message: str, *, result: ReconcileResult, candidate_index: int):
        super().__init__(message)
        self.result = result
        self.candidate_index = candidate_index


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    return str(value)


def _as_payload(candidate: Any) -> dict[str, Any]:
    if hasattr(candidate, "to_record"):
        return candidate.to_record()
    return dict(candidate)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def trades_match(
    existing: Any, candidate: Any, *, window_minutes: int = MATCH_WINDOW_MINUTES
) -> bool:
    if _text(_field(existing, "market")) != _text(_field(candidate, "market")):
        return False
    if _text(_field(existing, "direction")) != _text(_field(candidate, "direction")):
        return False
    existing_at = parse_iso(_field(existing, "entry_date_time"))
    candidate_at = parse_iso(_field(candidate, "entry_date_time"))
    if existing_at is None or candidate_at is None:
        return False
    return abs(existing_at - candidate_at) < timedelta(minutes=window_minutes)


def find_match(
    candidate: Any,
    existing: Iterable[Any],
    matched_ids: set[str],
    *,
    window_minutes: int = MATCH_WINDOW_MINUTES,
) -> Any | None:
    for trade in existing:
        if _field(trade, "id") in matched_ids:
            continue
        if trades_match(trade, candidate, window_minutes=window_minutes):
            return trade
    return None


def merge_changes(existing: Any, candidate: Any) -> dict[str, Any]:
    """Execution facts from the import; journaling fields are left alone."""
    return {
        "entry_price": _field(candidate, "entry_price") or _field(existing, "entry_price"),
        "exit_price": _field(candidate, "exit_price") or _field(existing, "exit_price"),
        "entry_date_time": _field(candidate, "entry_date_time"),
        "exit_time": _field(candidate, "exit_time"),
        "pnl": _field(candidate, "pnl"),
        "contracts": _field(candidate, "contracts"),
    }


def new_trade_payload(candidate: Any) -> dict[str, Any]:
    payload = _as_payload(candidate)
    payload["tags"] = [*(payload.get("tags") or []), IMPORTED_TAG]
    payload["status"] = TradeStatus.CLOSED.value
    return payload


async def reconcile(
    candidates: Sequence[Any],
    existing: Sequence[Any],
    update_fn: UpdateFn,
    create_fn: CreateFn,
    *,
    window_minutes: int = MATCH_WINDOW_MINUTES,
) -> ReconcileResult:
    result = ReconcileResult()
    matched_ids: set[str] = set()

    for index, candidate in enumerate(candidates):
        match = find_match(candidate, existing, matched_ids, window_minutes=window_minutes)
        try:
            if match is not None:
                trade_id = _field(match, "id")
                matched_ids.add(trade_id)
                await _maybe_await(update_fn(trade_id, merge_changes(match, candidate)))
                result.updated += 1
            else:
                await _maybe_await(create_fn(new_trade_payload(candidate)))
                result.created += 1
        except Exception as exc:
            logger.error(
                "Import write failed at candidate %d (created=%d, updated=%d): %s",
                index,
                result.created,
                result.updated,
                exc,
            )
            raise ReconcileError(
                f"Failed to store candidate {index}: {exc}",
                result=result,
                candidate_index=index,
            ) from exc

    return result


def run_reconcile(
    candidates: Sequence[Any],
    existing: Sequence[Any],
    update_fn: UpdateFn,
    create_fn: CreateFn,
    *,
    window_minutes: int = MATCH_WINDOW_MINUTES,
) -> ReconcileResult:
    """Blocking entry point for callers without an event loop.

    ``asyncio.run`` refuses to start inside a running loop; await ``reconcile`` there.
    """
    return asyncio.run(
        reconcile(candidates, existing, update_fn, create_fn, window_minutes=window_minutes)
    )
