"""
Sync orchestrator: runs task types across accounts and shards.

Each (account, task, shard) key runs under a lease, computes its window from
the watermark, fetches it through the task's adapter and records the outcome.
Only a fully exhausted fetch moves the watermark forward. Failures are caught
per shard and per account so one bad key never stops its siblings.
"""

import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select

from .config import Settings
from .database import Account
from .errors import AccountNotFoundError, PersistenceFailure
from .logger import get_logger
from .registry import TaskDefinition, TaskRegistry
from .schema import RunOptions
from .watermarks import DEFAULT_LEASE_TTL, NO_SHARD, WatermarkStore
from .window import FetchWindow

logger = get_logger()

OptionsLike = Union[None, RunOptions, Dict[str, Any]]


class ShardRunState(str, Enum):
    PENDING = "pending"
    WINDOW_COMPUTED = "window_computed"
    EMPTY_SKIPPED = "empty_skipped"
    FETCHING = "fetching"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    LOCKED = "locked"


# States that do not count against an account's run
OK_STATES = {ShardRunState.SUCCESS, ShardRunState.EMPTY_SKIPPED, ShardRunState.LOCKED}


@dataclass
class ShardRunResult:
    account_id: str
    task_type: str
    shard_key: str = NO_SHARD
    state: ShardRunState = ShardRunState.PENDING
    window: Optional[FetchWindow] = None
    record_count: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state in OK_STATES

    def to_dict(self) -> dict:
        return {
            "shard_key": self.shard_key,
            "state": self.state.value,
            "success": self.success,
            "start_date": self.window.start.isoformat() if self.window else None,
            "end_date": self.window.end.isoformat() if self.window else None,
            "record_count": self.record_count,
            "error": self.error,
        }


@dataclass
class AccountRunResult:
    account_id: str
    task_type: str
    shards: List[ShardRunResult] = field(default_factory=list)
    error: Optional[str] = None
    account_name: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and all(s.success for s in self.shards)

    @property
    def success_count(self) -> int:
        return sum(1 for s in self.shards if s.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for s in self.shards if not s.success)

    @property
    def total_records(self) -> int:
        return sum(s.record_count for s in self.shards)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "task_type": self.task_type,
            "success": self.success,
            "error": self.error,
            "results": [s.to_dict() for s in self.shards],
            "summary": {
                "total_shards": len(self.shards),
                "success_count": self.success_count,
                "fail_count": self.fail_count,
                "total_records": self.total_records,
            },
        }


@dataclass
class TaskRunSummary:
    task_type: str
    description: str = ""
    results: List[AccountRunResult] = field(default_factory=list)
    error: Optional[str] = None
    fail_override: Optional[int] = None

    @property
    def account_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def fail_count(self) -> int:
        if self.fail_override is not None:
            return self.fail_override
        return sum(1 for r in self.results if not r.success)

    @property
    def total_records(self) -> int:
        return sum(r.total_records for r in self.results)

    @property
    def success(self) -> bool:
        return self.error is None and self.fail_count == 0

    def to_dict(self) -> dict:
        return {
            "task_type": self.task_type,
            "description": self.description,
            "account_count": self.account_count,
            "error": self.error,
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "success_count": self.success_count,
                "fail_count": self.fail_count,
                "total_records": self.total_records,
            },
        }


@dataclass
class RunAllSummary:
    account_count: int = 0
    task_results: List[TaskRunSummary] = field(default_factory=list)

    @property
    def task_count(self) -> int:
        return len(self.task_results)

    @property
    def total_success(self) -> int:
        return sum(t.success_count for t in self.task_results)

    @property
    def total_fail(self) -> int:
        return sum(t.fail_count for t in self.task_results)

    @property
    def total_records(self) -> int:
        return sum(t.total_records for t in self.task_results)

    def to_dict(self) -> dict:
        return {
            "account_count": self.account_count,
            "task_results": [t.to_dict() for t in self.task_results],
            "summary": {
                "task_count": self.task_count,
                "total_success": self.total_success,
                "total_fail": self.total_fail,
                "total_records": self.total_records,
            },
        }


def default_lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class SyncOrchestrator:
    """
    Args:
        registry: Task registry
        watermarks: Watermark store (also holds the leases)
        session_factory: SQLAlchemy sessionmaker, used to load accounts
        settings: Defaults for options a run does not set
        owner: Lease owner id; defaults to host:pid:random
        sleep: Sleep function, injectable for tests
        lease_ttl: How long a lease stays valid without release
        clock: Returns the current local datetime
    """

    def __init__(
        self,
        registry: TaskRegistry,
        watermarks: WatermarkStore,
        session_factory,
        settings: Optional[Settings] = None,
        owner: Optional[str] = None,
        sleep: Optional[Callable[[float], None]] = None,
        lease_ttl: timedelta = DEFAULT_LEASE_TTL,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.registry = registry
        self.watermarks = watermarks
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.owner = owner or default_lease_owner()
        self.sleep = sleep or time.sleep
        self.lease_ttl = lease_ttl
        self.clock = clock

    # Accounts

    def get_active_accounts(self) -> List[Account]:
        stmt = select(Account).where(Account.is_active.is_(True)).order_by(Account.name, Account.id)
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def get_account(self, account_id: str) -> Account:
        with self.session_factory() as session:
            account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def resolve_options(self, options: OptionsLike) -> RunOptions:
        if options is None:
            options = RunOptions()
        elif isinstance(options, dict):
            options = RunOptions.from_dict(options)
        return options.with_defaults(self.settings)

    # Single key

    def run_shard(
        self,
        account: Account,
        definition: TaskDefinition,
        shard_key: str,
        options: RunOptions,
    ) -> ShardRunResult:
        """Run one (account, task, shard) key under its lease."""
        task_type = definition.task_type
        result = ShardRunResult(account_id=account.id, task_type=task_type, shard_key=shard_key)

        if not self.watermarks.acquire_lease(account.id, task_type, shard_key, self.owner, ttl=self.lease_ttl):
            result.state = ShardRunState.LOCKED
            logger.warning(
                "Key is leased by another run, skipping",
                account_id=account.id,
                task_type=task_type,
                shard_key=shard_key,
            )
            return result

        try:
            self._run_leased(result, account, definition, shard_key, options)
        finally:
            self.watermarks.release_lease(account.id, task_type, shard_key, self.owner)
        return result

    def _run_leased(
        self,
        result: ShardRunResult,
        account: Account,
        definition: TaskDefinition,
        shard_key: str,
        options: RunOptions,
    ) -> None:
        task_type = definition.task_type
        try:
            window = self.watermarks.get_incremental_window(
                account.id,
                task_type,
                shard_key,
                default_lookback_days=options.default_lookback_days,
                end_boundary=options.end_date,
                timezone=options.timezone,
            )
        except Exception as e:
            self._fail(result, e, "Window computation failed")
            return
        result.window = window
        result.state = ShardRunState.WINDOW_COMPUTED

        if window.is_empty:
            result.state = ShardRunState.EMPTY_SKIPPED
            logger.info(
                "Window is empty, skipping",
                account_id=account.id,
                task_type=task_type,
                shard_key=shard_key,
                window=str(window),
            )
            self._record(result, last_sync_at=self.clock(), last_status="skipped")
            return

        result.state = ShardRunState.FETCHING
        logger.record_run_attempt(task_type)
        logger.info(
            "Fetching",
            account_id=account.id,
            task_type=task_type,
            shard_key=shard_key,
            window=str(window),
        )
        try:
            fetched = definition.adapter.fetch_window(account, window, options, shard_key=shard_key)
        except Exception as e:
            self._fail(result, e, "Fetch failed")
            return

        result.record_count = fetched.total_accumulated
        if fetched.complete:
            result.state = ShardRunState.SUCCESS
            logger.record_run_success(task_type)
            logger.info(
                "Fetch succeeded",
                account_id=account.id,
                task_type=task_type,
                shard_key=shard_key,
                records=result.record_count,
                last_end_boundary=window.end,
            )
            failed_writes = fetched.stats.get("failed_page_writes", 0)
            note = None
            if failed_writes:
                note = f"{failed_writes} page(s) fetched but not saved"
                logger.warning(
                    "Watermark advanced past unsaved pages",
                    account_id=account.id,
                    task_type=task_type,
                    shard_key=shard_key,
                    failed_page_writes=failed_writes,
                    last_end_boundary=window.end,
                )
            self._record(
                result,
                last_end_boundary=window.end,
                last_sync_at=self.clock(),
                last_record_count=result.record_count,
                last_status="success",
                last_error_message=note,
            )
        else:
            result.state = ShardRunState.PARTIAL
            result.error = fetched.error
            logger.record_run_partial(task_type)
            logger.warning(
                "Fetch incomplete, watermark not advanced",
                account_id=account.id,
                task_type=task_type,
                shard_key=shard_key,
                records=result.record_count,
                error=fetched.error,
            )
            self._record(
                result,
                last_sync_at=self.clock(),
                last_record_count=result.record_count,
                last_status="partial",
                last_error_message=fetched.error,
            )

    def _fail(self, result: ShardRunResult, error: Exception, message: str) -> None:
        result.state = ShardRunState.FAILED
        result.error = str(error)
        logger.record_run_failure(result.task_type, type(error).__name__)
        logger.error(
            message,
            account_id=result.account_id,
            task_type=result.task_type,
            shard_key=result.shard_key,
            window=str(result.window) if result.window else None,
            error=str(error),
        )
        self._record(
            result,
            last_sync_at=self.clock(),
            last_record_count=0,
            last_status="failed",
            last_error_message=str(error),
        )

    def _record(self, result: ShardRunResult, **fields: Any) -> None:
        """Write the run outcome; a failed write is logged and the result stands."""
        try:
            self.watermarks.upsert_watermark(result.account_id, result.task_type, result.shard_key, **fields)
        except PersistenceFailure as e:
            logger.error(
                "Run finished but watermark was not saved",
                account_id=result.account_id,
                task_type=result.task_type,
                shard_key=result.shard_key,
                state=result.state.value,
                error=str(e),
            )

    # Account, task type, all

    def run_for_account(self, account_id: str, task_type: str, options: OptionsLike = None) -> AccountRunResult:
        """
        Run one task type for one account, shard by shard.

        Never raises for a run problem: an unknown task, a missing account or
        a failing shard enumeration comes back as a failed result.
        """
        outcome = AccountRunResult(account_id=account_id, task_type=task_type)
        try:
            definition = self.registry.get(task_type)
            account = self.get_account(account_id)
            outcome.account_name = account.name
            options = self.resolve_options(options)
            shard_keys = definition.shards(account.id) if definition.sharded else [NO_SHARD]
        except Exception as e:
            outcome.error = str(e)
            logger.error("Account run failed", account_id=account_id, task_type=task_type, error=str(e))
            return outcome

        if not shard_keys:
            logger.warning("No active shards, nothing to run", account_id=account_id, task_type=task_type)
            return outcome

        for i, shard_key in enumerate(shard_keys):
            if i > 0 and options.delay_between_shards:
                self.sleep(options.delay_between_shards)
            try:
                shard_result = self.run_shard(account, definition, shard_key, options)
            except Exception as e:
                shard_result = ShardRunResult(
                    account_id=account_id,
                    task_type=task_type,
                    shard_key=shard_key,
                    state=ShardRunState.FAILED,
                    error=str(e),
                )
                logger.error(
                    "Shard run failed",
                    account_id=account_id,
                    task_type=task_type,
                    shard_key=shard_key,
                    error=str(e),
                )
            outcome.shards.append(shard_result)

        logger.info(
            "Account run finished",
            account_id=account_id,
            task_type=task_type,
            shards=len(outcome.shards),
            success_count=outcome.success_count,
            fail_count=outcome.fail_count,
            total_records=outcome.total_records,
        )
        return outcome

    def run_by_task_type(self, task_type: str, options: OptionsLike = None) -> TaskRunSummary:
        """
        Run one task type for every active account.

        Raises:
            UnknownTaskError: If the task type is not registered
        """
        definition = self.registry.get(task_type)
        options = self.resolve_options(options)
        summary = TaskRunSummary(task_type=task_type, description=definition.description)

        accounts = self.get_active_accounts()
        if not accounts:
            logger.warning("No active accounts", task_type=task_type)
            return summary

        logger.info("Task run started", task_type=task_type, accounts=len(accounts))
        for i, account in enumerate(accounts):
            if i > 0 and options.delay_between_accounts:
                self.sleep(options.delay_between_accounts)
            summary.results.append(self.run_for_account(account.id, task_type, options))

        logger.info(
            "Task run finished",
            task_type=task_type,
            success_count=summary.success_count,
            fail_count=summary.fail_count,
            total_records=summary.total_records,
        )
        return summary

    def run_all(self, options: OptionsLike = None, task_types: Optional[Iterable[str]] = None) -> RunAllSummary:
        """Run every registered task type, or only the registered ones in task_types."""
        task_types = list(task_types or [])
        if task_types:
            selected = [t for t in task_types if t in self.registry]
            ignored = [t for t in task_types if t not in self.registry]
            if ignored:
                logger.warning("Ignoring unknown task types", task_types=ignored)
        else:
            selected = self.registry.task_types()

        options = self.resolve_options(options)
        summary = RunAllSummary(account_count=len(self.get_active_accounts()))
        for task_type in selected:
            try:
                summary.task_results.append(self.run_by_task_type(task_type, options))
            except Exception as e:
                logger.error("Task run failed", task_type=task_type, error=str(e))
                summary.task_results.append(TaskRunSummary(
                    task_type=task_type,
                    error=str(e),
                    fail_override=summary.account_count,
                ))

        logger.info(
            "Run-all finished",
            task_count=summary.task_count,
            total_success=summary.total_success,
            total_fail=summary.total_fail,
            total_records=summary.total_records,
        )
        return summary
