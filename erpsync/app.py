import argparse
from pathlib import Path
from typing import Optional

from sqlalchemy import select

from . import __version__
from .config import Settings
from .database import Account, init_database, session_factory
from .env import load_env
from .errors import AccountNotFoundError, ConfigError, SyncError, UnknownTaskError
from .job_status import JOB_PREFIX, list_job_task_status, run_sync_job
from .logger import get_logger
from .orchestrator import SyncOrchestrator
from .registry import build_default_registry
from .schema import RunOptions, validate_run_options
from .tasks.shops import refresh_shops
from .vendor.client import VendorClient
from .watermarks import WatermarkStore

logger = get_logger()


class Services:
    """Everything a command needs, wired from settings and one database path."""

    def __init__(self, settings: Settings, db_path: Optional[str] = None):
        self.settings = settings
        self.db_path = Path(db_path) if db_path else settings.db_path
        init_database(self.db_path)
        self.session_factory = session_factory(self.db_path)
        self.client = VendorClient(
            settings.api_base_url,
            self.session_factory,
            timeout=settings.request_timeout,
        )
        self.registry = build_default_registry(self.client, self.session_factory)
        self.watermarks = WatermarkStore(self.session_factory, timezone=settings.timezone)
        self.orchestrator = SyncOrchestrator(
            self.registry,
            self.watermarks,
            self.session_factory,
            settings=settings,
        )


def _services(args: argparse.Namespace) -> Services:
    return Services(args.settings, args.db)


def _run_options(args: argparse.Namespace) -> RunOptions:
    data = {
        "end_date": args.end_date,
        "default_lookback_days": args.lookback_days,
        "page_size": args.page_size,
        "fetch_details": args.fetch_details,
    }
    data = {k: v for k, v in data.items() if v is not None}
    errors = validate_run_options(data)
    if errors:
        print("Invalid options:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)
    return RunOptions(**data)


def _fmt(value) -> str:
    if value is None:
        return "-"
    if hasattr(value, "isoformat"):
        return value.isoformat(sep=" ", timespec="seconds") if hasattr(value, "hour") else value.isoformat()
    return str(value)


def cmd_init_db(args: argparse.Namespace) -> None:
    db_path = Path(args.db) if args.db else args.settings.db_path
    init_database(db_path)
    print(f"Database ready: {db_path}")


def cmd_add_account(args: argparse.Namespace) -> None:
    services = _services(args)
    with services.session_factory() as session:
        account = session.get(Account, args.id)
        status = "updated"
        if account is None:
            account = Account(id=args.id)
            session.add(account)
            status = "new"
        account.name = args.name
        account.app_id = args.app_id
        account.app_secret = args.app_secret
        account.is_active = not args.inactive
        session.commit()
    print(f"Account: {args.id}")
    print(f"Status: {status}")


def cmd_accounts(args: argparse.Namespace) -> None:
    services = _services(args)
    stmt = select(Account).order_by(Account.name, Account.id)
    with services.session_factory() as session:
        accounts = list(session.scalars(stmt))
    if not args.all:
        accounts = [a for a in accounts if a.is_active]
    if not accounts:
        print("No accounts.")
        return
    for a in accounts:
        state = "active" if a.is_active else "inactive"
        print(f"{a.id}  {a.name}  app_id={a.app_id}  {state}")


def cmd_task_types(args: argparse.Namespace) -> None:
    services = _services(args)
    for entry in services.registry.describe():
        print(f"{entry['task_type']:<18} {entry['grain']:<8} {entry['description']}")


def cmd_refresh_shops(args: argparse.Namespace) -> None:
    services = _services(args)
    if args.account:
        try:
            accounts = [services.orchestrator.get_account(args.account)]
        except AccountNotFoundError as e:
            raise SystemExit(str(e))
    else:
        accounts = services.orchestrator.get_active_accounts()
    if not accounts:
        print("No active accounts.")
        return
    failed = 0
    for account in accounts:
        try:
            counts = refresh_shops(services.client, services.session_factory, account)
            print(f"[ok] {account.id} new={counts['new']} updated={counts['updated']}")
        except SyncError as e:
            failed += 1
            print(f"[error] {account.id} -> {e}")
    if failed:
        raise SystemExit(1)


def _print_account_result(result) -> None:
    state = "ok" if result.success else "failed"
    print(f"[{state}] {result.account_id} {result.task_type} records={result.total_records}")
    if result.error:
        print(f"    error: {result.error}")
    for shard in result.shards:
        window = f"{shard.window}" if shard.window else "-"
        line = f"    shard={shard.shard_key or '-'} {shard.state.value} {window} records={shard.record_count}"
        if shard.error:
            line += f" error={shard.error}"
        print(line)


def cmd_run(args: argparse.Namespace) -> None:
    services = _services(args)
    options = _run_options(args)

    if args.account:
        result = services.orchestrator.run_for_account(args.account, args.task, options)
        _print_account_result(result)
        logger.log_metrics_summary()
        if not result.success:
            raise SystemExit(1)
        return

    try:
        summary = run_sync_job(services.orchestrator, services.session_factory, args.task, options)
    except UnknownTaskError as e:
        raise SystemExit(str(e))
    for result in summary.results:
        _print_account_result(result)
    print(
        f"Done. accounts={summary.account_count} success={summary.success_count} "
        f"failed={summary.fail_count} records={summary.total_records}"
    )
    logger.log_metrics_summary()
    if summary.fail_count:
        raise SystemExit(1)


def cmd_run_all(args: argparse.Namespace) -> None:
    services = _services(args)
    options = _run_options(args)
    task_types = [t.strip() for t in args.tasks.split(",") if t.strip()] if args.tasks else None

    summary = services.orchestrator.run_all(options, task_types=task_types)
    for task in summary.task_results:
        state = "ok" if task.success else "failed"
        line = f"[{state}] {task.task_type} success={task.success_count} failed={task.fail_count} records={task.total_records}"
        if task.error:
            line += f" error={task.error}"
        print(line)
    print(
        f"Done. tasks={summary.task_count} success={summary.total_success} "
        f"failed={summary.total_fail} records={summary.total_records}"
    )
    logger.log_metrics_summary()
    if summary.total_fail:
        raise SystemExit(1)


def cmd_status(args: argparse.Namespace) -> None:
    services = _services(args)
    rows = list_job_task_status(services.session_factory, prefix=args.prefix)
    if not rows:
        print("No job runs recorded.")
        return
    for row in rows:
        print(f"{row.job_name}")
        print(f"  Last run: {_fmt(row.last_run_at)}")
        print(f"  Status: {row.last_status or '-'}")
        if row.last_error:
            print(f"  Error: {row.last_error}")
        print(f"  Next run: {_fmt(row.next_scheduled_at)}")


def cmd_watermarks(args: argparse.Namespace) -> None:
    services = _services(args)
    rows = services.watermarks.list_watermarks(account_id=args.account, task_type=args.task)
    if not rows:
        print("No watermarks.")
        return
    for row in rows:
        print(
            f"{row.account_id}  {row.task_type}  shard={row.shard_key or '-'}  "
            f"end={_fmt(row.last_end_boundary)}  status={row.last_status or '-'}  "
            f"records={_fmt(row.last_record_count)}  synced={_fmt(row.last_sync_at)}"
        )
        if row.last_error_message:
            print(f"    error: {row.last_error_message}")


def _add_run_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--end-date", help="Inclusive end date YYYY-MM-DD (default: yesterday)")
    p.add_argument("--lookback-days", type=int, help="Window length for keys that never synced")
    p.add_argument("--page-size", type=int, help="Page length (clamped to the endpoint maximum)")
    p.add_argument("--fetch-details", action="store_true", default=None, help="Also fetch order details where supported")


def main():
    # Load .env if present (ERPSYNC_DB_PATH, ERPSYNC_LOG_LEVEL, etc.)
    load_env()
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        raise SystemExit(str(e))
    logger.configure(level=settings.log_level, log_dir=settings.log_dir)

    parser = argparse.ArgumentParser(prog="erpsync", description="Incremental ERP vendor sync")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help=f"Path to SQLite database (default: {settings.db_path})")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create database tables")
    ini.set_defaults(func=cmd_init_db)

    add = subparsers.add_parser("add-account", help="Register or update a vendor account")
    add.add_argument("--id", required=True, help="Account id")
    add.add_argument("--name", required=True, help="Display name")
    add.add_argument("--app-id", required=True, help="Vendor app id")
    add.add_argument("--app-secret", required=True, help="Vendor app secret")
    add.add_argument("--inactive", action="store_true", help="Register the account as inactive")
    add.set_defaults(func=cmd_add_account)

    acc = subparsers.add_parser("accounts", help="List accounts")
    acc.add_argument("--all", action="store_true", help="Include inactive accounts")
    acc.set_defaults(func=cmd_accounts)

    tt = subparsers.add_parser("task-types", help="List registered task types")
    tt.set_defaults(func=cmd_task_types)

    shp = subparsers.add_parser("refresh-shops", help="Pull shop lists from the vendor")
    shp.add_argument("--account", help="Only this account (default: all active)")
    shp.set_defaults(func=cmd_refresh_shops)

    run = subparsers.add_parser("run", help="Run one task type now")
    run.add_argument("task", help="Task type (see task-types)")
    run.add_argument("--account", help="Only this account; job status is not recorded")
    _add_run_args(run)
    run.set_defaults(func=cmd_run)

    rall = subparsers.add_parser("run-all", help="Run all (or listed) task types")
    rall.add_argument("--tasks", help="Comma-separated task types; unknown names are ignored")
    _add_run_args(rall)
    rall.set_defaults(func=cmd_run_all)

    st = subparsers.add_parser("status", help="Show the job status ledger")
    st.add_argument("--prefix", default=JOB_PREFIX, help=f"Job name prefix (default: {JOB_PREFIX})")
    st.set_defaults(func=cmd_status)

    wm = subparsers.add_parser("watermarks", help="List sync watermarks")
    wm.add_argument("--account", help="Filter by account id")
    wm.add_argument("--task", help="Filter by task type")
    wm.set_defaults(func=cmd_watermarks)

    args = parser.parse_args()
    args.settings = settings

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
