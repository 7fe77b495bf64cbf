"""
Command line front end for the shipment document intake workflow.

Usage:
    python -m src.cli.intake_cli init-db
    python -m src.cli.intake_cli upload --title <title> [--description <text>] <file> [<file> ...]
    python -m src.cli.intake_cli history
    python -m src.cli.intake_cli show [--id <shipment_request_id>]
    python -m src.cli.intake_cli edit --id <id> --field <field> --value <value>
    python -m src.cli.intake_cli complete --id <id>
    python -m src.cli.intake_cli logs --id <id> [--follow]
    python -m src.cli.intake_cli validate [--id <id>] [FIELD=VALUE ...]

Global options such as --memory and --db-host go before the command name.
"""

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import psycopg

from src.config.settings import IntakeSettings
from src.core.errors import IntakeError, StoreError
from src.core.models import AuditLogEntry, IntakeFile, ShipmentFields
from src.core.rules import RuleEngine, load_field_rules
from src.extraction import ExtractionClient
from src.observability.logger import get_logger, reconfigure_loggers
from src.observability.metrics import start_metrics_server
from src.store import (
    AsyncDatabaseConnectionPool,
    InMemoryShipmentStore,
    PostgresShipmentStore,
    Principal,
    ShipmentStore,
    apply_schema,
)
from src.workflow import DocumentSession, LogFeed

logger = get_logger(__name__)

MEMORY_USER_ID = "local-user"


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def load_settings(args) -> IntakeSettings:
    """Environment settings with command line overrides applied."""
    settings = IntakeSettings.from_env(args.env_file)
    overrides = {
        "api_url": args.api_url,
        "db_host": args.db_host,
        "db_port": args.db_port,
        "db_name": args.db_name,
        "db_user": args.db_user,
        "db_password": args.db_password,
        "user_id": args.user,
    }
    return settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def build_pool(settings: IntakeSettings) -> AsyncDatabaseConnectionPool:
    return AsyncDatabaseConnectionPool(
        host=settings.db_host,
        port=settings.db_port,
        database=settings.db_name,
        user=settings.db_user,
        password=settings.db_password,
    )


@asynccontextmanager
async def open_store(settings: IntakeSettings, memory: bool):
    """Yield a ready store (PostgreSQL unless ``memory`` is set)."""
    if memory:
        store = InMemoryShipmentStore()
        store.sign_in(settings.user_id or MEMORY_USER_ID)
        yield store
        return

    principal = Principal(id=settings.user_id) if settings.user_id else None
    pool = build_pool(settings)
    await pool.open()
    store = PostgresShipmentStore(pool, principal)
    try:
        yield store
    finally:
        await store.close()
        await pool.close()


def build_session(store: ShipmentStore, settings: IntakeSettings) -> DocumentSession:
    client = ExtractionClient(settings.api_url, timeout=settings.api_timeout)
    rule_engine = RuleEngine(load_field_rules(settings.field_rules_path))
    return DocumentSession(store, client, rule_engine=rule_engine)


def print_fields(fields: ShipmentFields, errors: dict[str, str] | None = None) -> None:
    errors = errors or {}
    print(f"{'Field':<25} {'Value':<40} {'Validation'}")
    print(f"{'-' * 80}")
    for name, info in ShipmentFields.model_fields.items():
        value = getattr(fields, name) or "-"
        print(f"{info.alias:<25} {value:<40} {errors.get(name, 'ok')}")


def print_batch(session: DocumentSession) -> None:
    batch = session.current_batch
    document = session.current_document
    if batch is None:
        return

    print(f"\n{'=' * 80}")
    print(f"SHIPMENT REQUEST: {batch.shipment_request_id}")
    print(f"{'=' * 80}\n")
    print(f"Title:       {batch.title}")
    print(f"Description: {batch.description or '-'}")
    print(f"Status:      {batch.status.value}")
    print(f"Uploaded:    {format_timestamp(batch.uploaded_at)}")
    print(f"Files:       {', '.join(d.file_name for d in batch.files)}\n")

    if document is not None:
        print_fields(document.data, session.validate_current().errors)
    print(f"\n{'=' * 80}\n")


def format_log_entry(entry: AuditLogEntry) -> str:
    details = json.dumps(entry.payload) if entry.payload else "-"
    return f"{format_timestamp(entry.created_at):<20} {entry.status:<20} {entry.actor:<38} {details}"


def parse_assignments(assignments: list[str]) -> dict[str, str]:
    """Parse FIELD=VALUE pairs (field names or camelCase aliases)."""
    values = {}
    for item in assignments:
        if "=" not in item:
            raise ValueError(f"Expected FIELD=VALUE, got: {item}")
        key, value = item.split("=", 1)
        values[ShipmentFields.resolve_name(key.strip())] = value
    return values


# --- Commands ---


async def init_db_command(args, settings: IntakeSettings) -> int:
    """Create the tables and the log notification trigger."""
    pool = build_pool(settings)
    async with pool:
        await apply_schema(pool)
    print(f"Schema applied to {settings.db_name} at {settings.db_host}:{settings.db_port}")
    return 0


async def upload_command(args, settings: IntakeSettings) -> int:
    """Upload files, extract their fields and print the batch."""
    files = [IntakeFile.from_path(path) for path in args.files]

    async with open_store(settings, args.memory) as store:
        session = build_session(store, settings)
        try:
            await session.upload_documents(files, args.title, args.description)
        except IntakeError as e:
            print(f"\nError: {e.message}")
            await session.drain()
            return 1

        print_batch(session)
        await session.drain()
        for failure in session.dispatcher.failures:
            print(f"Warning: audit entry '{failure.entry.status}' not stored: {failure.error}")

        if args.memory:
            batch = session.current_batch
            print("Audit log:")
            for entry in await store.fetch_logs(batch.shipment_request_id):
                print(f"  {format_log_entry(entry)}")
    return 0


async def history_command(args, settings: IntakeSettings) -> int:
    """List the user's shipment requests, newest first."""
    async with open_store(settings, args.memory) as store:
        session = build_session(store, settings)
        items = await session.history()

    if not items:
        print("\nNo shipment requests found.")
        return 0

    print(f"\n{'Created':<20} {'Status':<14} {'Id':<38} {'Title'}")
    print(f"{'-' * 80}")
    for item in items:
        status = item.status.value if item.status else "-"
        print(f"{format_timestamp(item.created_at):<20} {status:<14} {item.shipment_request_id or '-':<38} {item.title}")
    return 0


async def _load(session: DocumentSession, store: ShipmentStore, record_id: str | None) -> bool:
    if record_id is None:
        principal = await store.get_principal()
        if principal is None:
            print("\nError: Please sign in to view shipment requests")
            return False
        record_id = await store.latest_request_id(principal.id)
        if record_id is None:
            print("\nNo shipment requests found.")
            return False
    try:
        await session.load_shipment_request(record_id)
    except IntakeError as e:
        print(f"\nError: {e.message}")
        return False
    return True


async def show_command(args, settings: IntakeSettings) -> int:
    """Show one shipment request (the latest when no id is given)."""
    async with open_store(settings, args.memory) as store:
        session = build_session(store, settings)
        if not await _load(session, store, args.id):
            return 1
        print_batch(session)
    return 0


async def edit_command(args, settings: IntakeSettings) -> int:
    """Commit one field edit to a shipment request."""
    async with open_store(settings, args.memory) as store:
        session = build_session(store, settings)
        if not await _load(session, store, args.id):
            return 1

        try:
            field = ShipmentFields.resolve_name(args.field)
        except KeyError as e:
            print(f"\nError: {e.args[0]}")
            return 1

        errors = session.validate_current({field: args.value}).errors
        committed = await session.commit_field(field, args.value)
        await session.drain()

        if committed:
            print(f"Updated {args.field} to '{args.value}'")
            return 0
        if session.current_batch.is_completed:
            print("This shipment request has been completed. Fields are read-only.")
        elif errors:
            for name, message in errors.items():
                print(f"  {name}: {message}")
        else:
            print("Nothing to update.")
        return 1


async def complete_command(args, settings: IntakeSettings) -> int:
    """Mark a reviewed shipment request completed."""
    async with open_store(settings, args.memory) as store:
        session = build_session(store, settings)
        if not await _load(session, store, args.id):
            return 1

        completed = await session.submit_completion()
        await session.drain()

        batch = session.current_batch
        if completed:
            print(f"Shipment request {batch.shipment_request_id} completed.")
            return 0
        print(f"Shipment request cannot be completed (status: {batch.status.value}).")
        for name, message in session.validate_current().errors.items():
            print(f"  {name}: {message}")
        return 1


async def logs_command(args, settings: IntakeSettings) -> int:
    """Print a request's audit log; with --follow, keep printing new entries."""
    async with open_store(settings, args.memory) as store:
        feed = LogFeed(store, on_entry=lambda entry: print(format_log_entry(entry), flush=True))
        async with feed:
            entries = await feed.open(args.id)
            print(f"\n{'Timestamp':<20} {'Status':<20} {'Actor':<38} {'Details'}")
            print(f"{'-' * 80}")
            for entry in entries:
                print(format_log_entry(entry))

            if args.follow:
                print("\nFollowing new entries (Ctrl+C to stop)...", flush=True)
                try:
                    while True:
                        await asyncio.sleep(3600)
                except asyncio.CancelledError:
                    pass
    return 0


async def validate_command(args, settings: IntakeSettings) -> int:
    """Validate field values, optionally on top of a stored request."""
    try:
        values = parse_assignments(args.assignments)
    except (ValueError, KeyError) as e:
        print(f"\nError: {e}")
        return 1

    rule_engine = RuleEngine(load_field_rules(settings.field_rules_path))

    if args.id:
        async with open_store(settings, args.memory) as store:
            session = DocumentSession(store, ExtractionClient(settings.api_url), rule_engine=rule_engine)
            if not await _load(session, store, args.id):
                return 1
            fields = session.current_document.data.merged(values)
    else:
        fields = ShipmentFields(**values)

    result = rule_engine.validate_fields(fields)
    print_fields(fields, result.errors)
    summary = rule_engine.get_rule_summary()
    by_type = ", ".join(f"{name}: {count}" for name, count in sorted(summary["rules_by_type"].items()))
    print(f"\nRules applied: {summary['total_rules']} ({by_type})")
    print(f"\n{'Valid' if result.passed else f'{result.error_count} field(s) invalid'}")
    return 0 if result.passed else 1


COMMANDS = {
    "init-db": init_db_command,
    "upload": upload_command,
    "history": history_command,
    "show": show_command,
    "edit": edit_command,
    "complete": complete_command,
    "logs": logs_command,
    "validate": validate_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Shipment document intake",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the database schema
  python -m src.cli.intake_cli init-db

  # Upload documents for extraction
  python -m src.cli.intake_cli upload --title "Batch A" docs/inv.pdf docs/packing.xlsx

  # Try the workflow without a database
  python -m src.cli.intake_cli --memory upload --title "Batch A" docs/inv.pdf

  # Correct a field and complete the request
  python -m src.cli.intake_cli edit --id <id> --field containerNumber --value MSCU1234567
  python -m src.cli.intake_cli complete --id <id>

  # Follow the audit log
  python -m src.cli.intake_cli logs --id <id> --follow
        """
    )

    parser.add_argument("--env-file", default=None, help="dotenv file to load (default: ./.env)")
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Use a process-local store instead of PostgreSQL"
    )
    parser.add_argument("--api-url", default=None, help="Extraction API base URL (env: INTAKE_API_URL)")
    parser.add_argument("--user", default=None, help="Acting user id (env: INTAKE_USER_ID)")
    parser.add_argument("--db-host", default=None, help="Database host (env: DB_HOST)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (env: DB_PORT)")
    parser.add_argument("--db-name", default=None, help="Database name (env: DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (env: DB_USER)")
    parser.add_argument("--db-password", default=None, help="Database password (env: DB_PASSWORD)")
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port while the command runs"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create tables and the log notification trigger")

    upload_parser = subparsers.add_parser("upload", help="Upload documents for extraction")
    upload_parser.add_argument("--title", required=True, help="Shipment request title")
    upload_parser.add_argument("--description", default=None, help="Optional description")
    upload_parser.add_argument("files", nargs="+", type=Path, help="PDF or Excel files")

    subparsers.add_parser("history", help="List shipment requests")

    show_parser = subparsers.add_parser("show", help="Show a shipment request")
    show_parser.add_argument("--id", default=None, help="Shipment request id (default: latest)")

    edit_parser = subparsers.add_parser("edit", help="Edit one extracted field")
    edit_parser.add_argument("--id", default=None, help="Shipment request id (default: latest)")
    edit_parser.add_argument("--field", required=True, help="Field name, e.g. containerNumber")
    edit_parser.add_argument("--value", required=True, help="New value")

    complete_parser = subparsers.add_parser("complete", help="Mark a reviewed request completed")
    complete_parser.add_argument("--id", default=None, help="Shipment request id (default: latest)")

    logs_parser = subparsers.add_parser("logs", help="Show the audit log of a request")
    logs_parser.add_argument("--id", required=True, help="Shipment request id")
    logs_parser.add_argument("--follow", action="store_true", help="Keep printing new entries")

    validate_parser = subparsers.add_parser("validate", help="Validate field values")
    validate_parser.add_argument("--id", default=None, help="Validate on top of a stored request")
    validate_parser.add_argument("assignments", nargs="*", help="FIELD=VALUE pairs")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = load_settings(args)
    reconfigure_loggers(level=settings.log_level, format_type=settings.log_format)

    needs_db = args.command != "validate" or args.id is not None
    if not args.memory and needs_db and not settings.db_password:
        print("\nError: DB_PASSWORD is not set (use --memory to run without a database)")
        return 1

    if args.metrics_port:
        start_metrics_server(args.metrics_port)
        logger.info(f"Metrics available on port {args.metrics_port}")

    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except KeyboardInterrupt:
        return 130
    except (StoreError, psycopg.Error, OSError) as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        print(f"\nError: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
