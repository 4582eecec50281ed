from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from tradelog.ingest.tokenizer import normalize_delimiter

CUSTOM_PREFIX = "custom:"

# Canonical field name (as stored in column mappings) -> ParsedTrade attribute.
CANONICAL_FIELDS: Mapping[str, str] = MappingProxyType(
    {
        "market": "market",
        "direction": "direction",
        "entryDateTime": "entry_date_time",
        "exitTime": "exit_time",
        "entryPrice": "entry_price",
        "exitPrice": "exit_price",
        "contracts": "contracts",
        "pnl": "pnl",
        "durationSeconds": "duration_seconds",
        "setup": "setup",
        "notesRaw": "notes_raw",
        "plannedSL": "planned_sl",
        "plannedTP": "planned_tp",
        "maePrice": "mae_price",
        "mfePrice": "mfe_price",
    }
)

REQUIRED_FIELDS = ["market", "direction", "entryDateTime", "entryPrice", "contracts"]

FIELD_KINDS: Mapping[str, str] = MappingProxyType(
    {
        "market": "text",
        "direction": "direction",
        "entryDateTime": "date",
        "exitTime": "date",
        "entryPrice": "number",
        "exitPrice": "number",
        "contracts": "contracts",
        "pnl": "number",
        "durationSeconds": "duration",
        "setup": "text",
        "notesRaw": "text",
        "plannedSL": "number",
        "plannedTP": "number",
        "maePrice": "number",
        "mfePrice": "number",
    }
)

FIELD_HELP: dict[str, str] = {
    "market": "Instrument or ticker, e.g. NQ, MESM5. Futures roots drive the $/point multiplier.",
    "direction": "Long/Short, Buy/Sell, B/S or 1/-1/0. Omit when the profile infers it from fills.",
    "entryDateTime": "Entry fill time. Parsed with the profile date format.",
    "exitTime": "Exit fill time. Parsed with the profile date format.",
    "entryPrice": "Average entry price.",
    "exitPrice": "Average exit price.",
    "contracts": "Filled size. Blank or zero cells count as 1 contract.",
    "pnl": "Realized P&L. Currency symbols, commas and (negatives) are accepted.",
    "durationSeconds": "Seconds held, or text such as '2min 51sec' or '00:02:51'.",
    "setup": "Setup/strategy label copied verbatim.",
    "notesRaw": "Free-text notes copied verbatim.",
    "plannedSL": "Planned stop price. Required for risk and R-multiple metrics.",
    "plannedTP": "Planned target price.",
    "maePrice": "Worst price reached against the position before exit.",
    "mfePrice": "Best price reached in favor of the position before exit.",
}

COLUMN_ALIASES: dict[str, list[str]] = {
    "market": ["symbol", "instrument", "contract", "ticker", "market"],
    "direction": ["side", "direction", "market pos", "buy/sell", "action", "position"],
    "entryDateTime": ["entry time", "open time", "bought timestamp", "entry date", "date", "time"],
    "exitTime": ["exit time", "close time", "sold timestamp", "exit date"],
    "entryPrice": ["entry price", "open price", "avg open", "buy price", "price"],
    "exitPrice": ["exit price", "close price", "avg close", "sell price"],
    "contracts": ["qty", "quantity", "contracts", "size", "filled"],
    "pnl": ["pnl", "p/l", "profit", "profit/loss", "realized", "net profit"],
    "durationSeconds": ["duration", "time in trade", "hold time"],
    "setup": ["setup", "strategy"],
    "notesRaw": ["notes", "comment", "comments"],
    "plannedSL": ["stop", "stop loss", "sl", "planned sl"],
    "plannedTP": ["target", "take profit", "tp", "planned tp"],
    "maePrice": ["mae price", "mae"],
    "mfePrice": ["mfe price", "mfe"],
}


def _normalize(text: str) -> str:
    return " ".join(text.strip().lower().replace("_", " ").split())


def _match_key(text: str) -> str:
    return "".join(ch for ch in text.strip().lower() if ch.isalnum())


_FIELD_BY_MATCH_KEY = {_match_key(name): name for name in CANONICAL_FIELDS}


def canonical_field_name(name: Any) -> str | None:
    """Resolve ``entryDateTime``, ``entry_date_time`` or ``Entry Date Time``."""
    if name is None:
        return None
    return _FIELD_BY_MATCH_KEY.get(_match_key(str(name)))


@dataclass(frozen=True)
class ImportProfile:
    key: str
    name: str
    column_mappings: Mapping[str, str | None] = field(default_factory=dict)
    delimiter: str = ","
    date_format: str = ""
    builtin: bool = False
    infer_direction: bool = False

    @property
    def reference(self) -> str:
        return self.key if self.builtin else f"{CUSTOM_PREFIX}{self.key}"

    def field_mappings(self) -> list[tuple[str, str]]:
        """(source header, canonical field) pairs in mapping order, unmapped entries dropped.

        Several sources may name the same field; the parser settles that once it
        knows which of them the header actually carries.
        """
        pairs: list[tuple[str, str]] = []
        for source, target in self.column_mappings.items():
            canonical = canonical_field_name(target)
            if canonical is not None:
                pairs.append((source, canonical))
        return pairs

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.key,
            "name": self.name,
            "type": "builtin" if self.builtin else "custom",
            "columnMappings": dict(self.column_mappings),
            "delimiter": self.delimiter,
            "dateFormat": self.date_format,
            "inferDirection": self.infer_direction,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, key: str | None = None) -> "ImportProfile":
        mappings = payload.get("columnMappings", payload.get("column_mappings")) or {}
        if not isinstance(mappings, Mapping):
            raise ValueError("Column mappings must be a dictionary.")
        resolved_key = key or str(payload.get("id") or payload.get("key") or "").strip()
        if not resolved_key:
            raise ValueError("Profile id is required.")
        return cls(
            key=resolved_key,
            name=str(payload.get("name") or resolved_key),
            column_mappings={str(source): target for source, target in mappings.items()},
            delimiter=normalize_delimiter(payload.get("delimiter")),
            date_format=str(payload.get("dateFormat", payload.get("date_format")) or ""),
            builtin=str(payload.get("type", "custom")) == "builtin",
            infer_direction=bool(payload.get("inferDirection", payload.get("infer_direction", False))),
        )


BUILTIN_PROFILES: Mapping[str, ImportProfile] = MappingProxyType(
    {
        # Performance report: symbol,_priceFormat,_priceFormatType,_tickSize,buyFillId,
        # sellFillId,qty,buyPrice,sellPrice,pnl,boughtTimestamp,soldTimestamp,duration
        "tradovate": ImportProfile(
            key="tradovate",
            name="Tradovate",
            column_mappings=MappingProxyType(
                {
                    "symbol": "market",
                    "qty": "contracts",
                    "buyPrice": "entryPrice",
                    "sellPrice": "exitPrice",
                    "pnl": "pnl",
                    "boughtTimestamp": "entryDateTime",
                    "soldTimestamp": "exitTime",
                    "duration": "durationSeconds",
                }
            ),
            delimiter=",",
            date_format="MM/DD/YYYY HH:mm:ss",
            builtin=True,
            infer_direction=True,
        ),
        "ninjatrader": ImportProfile(
            key="ninjatrader",
            name="NinjaTrader",
            column_mappings=MappingProxyType(
                {
                    "Instrument": "market",
                    "Market pos.": "direction",
                    "Qty": "contracts",
                    "Entry price": "entryPrice",
                    "Exit price": "exitPrice",
                    "Profit": "pnl",
                    "Entry time": "entryDateTime",
                    "Exit time": "exitTime",
                }
            ),
            delimiter=",",
            date_format="MM/DD/YYYY HH:mm:ss",
            builtin=True,
        ),
        "tradingview": ImportProfile(
            key="tradingview",
            name="TradingView",
            column_mappings=MappingProxyType(
                {
                    "Symbol": "market",
                    "Side": "direction",
                    "Qty": "contracts",
                    "Price": "entryPrice",
                    "Close Price": "exitPrice",
                    "Profit": "pnl",
                    "Date": "entryDateTime",
                }
            ),
            delimiter=",",
            date_format="YYYY-MM-DD HH:mm:ss",
            builtin=True,
        ),
    }
)


def resolve_profile(
    reference: str, custom_profiles: Mapping[str, ImportProfile] | None = None
) -> ImportProfile:
    text = reference.strip()
    if text.startswith(CUSTOM_PREFIX):
        profile_id = text.removeprefix(CUSTOM_PREFIX)
        profile = (custom_profiles or {}).get(profile_id)
        if profile is None:
            raise ValueError(f"Custom import profile '{profile_id}' not found.")
        return profile
    profile = BUILTIN_PROFILES.get(text.lower())
    if profile is None:
        raise ValueError(
            f"Unknown import profile '{reference}'. "
            f"Built-ins: {', '.join(sorted(BUILTIN_PROFILES))}."
        )
    return profile


def validate_profile(profile: ImportProfile, headers: list[str] | None = None) -> list[str]:
    errors: list[str] = []
    if not profile.name.strip():
        errors.append("Profile name is required.")
    try:
        normalize_delimiter(profile.delimiter)
    except ValueError as exc:
        errors.append(str(exc))

    seen_fields: dict[str, str] = {}
    for source, target in profile.column_mappings.items():
        if target is None or not str(target).strip():
            continue
        canonical = canonical_field_name(target)
        if canonical is None:
            errors.append(f"Column '{source}' maps to unsupported field '{target}'.")
            continue
        previous = seen_fields.get(canonical)
        if previous is not None:
            errors.append(
                f"Field '{canonical}' is mapped from multiple columns "
                f"('{previous}' and '{source}'); the last one wins."
            )
        seen_fields[canonical] = source
        if headers is not None and source not in headers:
            errors.append(f"Column '{source}' is not present in the CSV header.")

    for required in REQUIRED_FIELDS:
        if required == "direction" and profile.infer_direction:
            continue
        if required not in seen_fields:
            errors.append(f"Missing required field mapping '{required}'.")
    return errors


def suggest_column_mappings(headers: list[str]) -> dict[str, str | None]:
    """Best-effort header -> field guesses for authoring a custom profile."""
    normalized = {header: _normalize(header) for header in headers}
    compact = {header: _match_key(header) for header in headers}
    suggestions: dict[str, str | None] = {header: None for header in headers}
    taken: set[str] = set()

    for canonical, aliases in COLUMN_ALIASES.items():
        candidates = [canonical, *aliases]
        for candidate in candidates:
            wanted = _normalize(candidate)
            wanted_key = _match_key(candidate)
            source = next(
                (
                    header
                    for header in headers
                    if header not in taken
                    and (normalized[header] == wanted or compact[header] == wanted_key)
                ),
                None,
            )
            if source is not None:
                suggestions[source] = canonical
                taken.add(source)
                break
    return suggestions


def header_mapping_hints(headers: list[str]) -> list[tuple[str, str | None, str]]:
    """(header, suggested field, what that field expects) for each header."""
    return [
        (header, canonical, FIELD_HELP[canonical] if canonical else "")
        for header, canonical in suggest_column_mappings(headers).items()
    ]
