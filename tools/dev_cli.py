from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

load_dotenv(dotenv_path=REPO_ROOT / ".env")

from tradelog.config.paths import BACKUP_DIR, DATA_DIR, IMPORTS_DIR, ensure_data_dirs  # noqa: E402
from tradelog.config.settings import get_settings  # noqa: E402


def _read_text(path: str) -> str:
    return Path(path).expanduser().read_text(encoding="utf-8-sig")


def _print_issues(issues: list[str]) -> None:
    for issue in issues:
        print(f"  {issue}")


def _cmd_init_db(_: argparse.Namespace) -> int:
    from tradelog.db.migrate import migrate

    migrate()
    print("Initialized database schema.")
    return 0


def _cmd_paths(_: argparse.Namespace) -> int:
    ensure_data_dirs()
    print(f"DATA_DIR={DATA_DIR}")
    print(f"IMPORTS_DIR={IMPORTS_DIR}")
    print(f"BACKUP_DIR={BACKUP_DIR}")
    print(f"DATABASE_URL={get_settings().database_url}")
    return 0


def _cmd_profiles(_: argparse.Namespace) -> int:
    from tradelog.db.migrate import migrate
    from tradelog.db.repository import ImportProfileStore, session_scope
    from tradelog.ingest.profiles import BUILTIN_PROFILES

    engine = migrate()
    with session_scope(engine) as session:
        custom = ImportProfileStore(session).list()

    for profile in [*BUILTIN_PROFILES.values(), *custom]:
        print(f"{profile.reference:<44} {profile.name}  delimiter={profile.delimiter!r}")
    return 0


def _cmd_headers(args: argparse.Namespace) -> int:
    from tradelog.ingest.csv_import import detect_headers
    from tradelog.ingest.profiles import header_mapping_hints

    headers = detect_headers(_read_text(args.file), args.delimiter)
    if not headers:
        print("No header row found.")
        return 1
    for header, suggestion, hint in header_mapping_hints(headers):
        print(f"{header:<32} -> {suggestion or '-':<16} {hint}".rstrip())
    return 0


def _resolve(reference: str):
    from tradelog.db.migrate import migrate
    from tradelog.db.repository import ImportProfileStore, session_scope

    engine = migrate()
    with session_scope(engine) as session:
        return engine, ImportProfileStore(session).resolve(reference)


def _cmd_preview(args: argparse.Namespace) -> int:
    from tradelog.ingest.csv_import import preview_import

    _, profile = _resolve(args.profile)
    preview = preview_import(_read_text(args.file), profile)
    print(f"Found {preview.found} trades using {profile.name}.")
    if preview.found:
        print(preview.to_frame().head(args.limit).to_string(index=False))
    _print_issues(preview.issues)
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    from tradelog.db.repository import session_scope
    from tradelog.ingest.dedupe import ReconcileError
    from tradelog.ingest.importer import import_trades_csv

    engine, profile = _resolve(args.profile)
    csv_text = _read_text(args.file)
    try:
        with session_scope(engine) as session:
            summary = import_trades_csv(
                session,
                csv_text,
                profile,
                account_id=args.account,
                dry_run=args.dry_run,
            )
    except ReconcileError as exc:
        print(
            f"Import failed at row {exc.candidate_index + 1}: {exc.__cause__}. "
            f"Rolled back {exc.result.created} creates and {exc.result.updated} updates."
        )
        return 1

    prefix = "Dry run: would import" if summary.dry_run else "Imported"
    print(
        f"{prefix} {summary.found} trades "
        f"({summary.created} new, {summary.updated} updated)."
    )
    _print_issues(summary.issues)
    return 0


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Tradelog developer CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sp_init_db = subparsers.add_parser("init-db", help="Create/update local database schema")
    sp_init_db.set_defaults(func=_cmd_init_db)

    sp_paths = subparsers.add_parser("paths", help="Print configured project paths")
    sp_paths.set_defaults(func=_cmd_paths)

    sp_profiles = subparsers.add_parser("profiles", help="List built-in and custom import profiles")
    sp_profiles.set_defaults(func=_cmd_profiles)

    sp_headers = subparsers.add_parser(
        "headers", help="Show CSV header columns with suggested field mappings"
    )
    sp_headers.add_argument("file", help="Broker CSV export.")
    sp_headers.add_argument("--delimiter", default=",", help="',', ';' or 'tab'.")
    sp_headers.set_defaults(func=_cmd_headers)

    sp_preview = subparsers.add_parser("preview", help="Parse a CSV without touching the database")
    sp_preview.add_argument("file", help="Broker CSV export.")
    sp_preview.add_argument(
        "--profile",
        default=settings.default_profile,
        help="Built-in profile key or custom:<id>.",
    )
    sp_preview.add_argument("--limit", type=int, default=20, help="Rows to print.")
    sp_preview.set_defaults(func=_cmd_preview)

    sp_import = subparsers.add_parser("import", help="Import a CSV into the trade journal")
    sp_import.add_argument("file", help="Broker CSV export.")
    sp_import.add_argument(
        "--profile",
        default=settings.default_profile,
        help="Built-in profile key or custom:<id>.",
    )
    sp_import.add_argument(
        "--account",
        default=settings.default_account_id,
        help="Account the trades belong to.",
    )
    sp_import.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be created/updated without writing.",
    )
    sp_import.set_defaults(func=_cmd_import)

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    try:
        return args.func(args)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
