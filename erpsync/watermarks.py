"""
Watermark store: the persisted "last fully synced boundary" per
(account, task type, shard) and the window arithmetic built on it.

Windows are date-grained and end at "yesterday" in the configured timezone
unless the caller passes an explicit end boundary. Run N+1 starts the day
after the boundary recorded by run N, and the boundary only moves when the
orchestrator reports a complete run.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Union

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .database import SyncWatermark
from .errors import PersistenceFailure
from .logger import get_logger
from .window import BoundaryLike, FetchWindow, compute_window, parse_boundary, yesterday_in

logger = get_logger()

# The one key used for tasks that are not split into shards.
NO_SHARD = ""

WATERMARK_FIELDS = (
    "last_end_boundary",
    "last_sync_at",
    "last_record_count",
    "last_status",
    "last_error_message",
)

DEFAULT_LEASE_TTL = timedelta(hours=2)


def canonical_shard_key(shard: Union[None, int, str]) -> str:
    """Map a shard id to its stored key; None means "no shard"."""
    if shard is None:
        return NO_SHARD
    if isinstance(shard, bool):
        raise TypeError("shard key cannot be a bool")
    return str(shard).strip()


class WatermarkStore:
    """
    Args:
        session_factory: SQLAlchemy sessionmaker
        timezone: IANA timezone used to decide what "yesterday" is
        clock: Returns the current local datetime
    """

    def __init__(
        self,
        session_factory,
        timezone: str = "Asia/Shanghai",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.timezone = timezone
        self.clock = clock

    def get_watermark(
        self,
        account_id: str,
        task_type: str,
        shard_key: Union[None, int, str] = NO_SHARD,
    ) -> Optional[SyncWatermark]:
        key = (account_id, task_type, canonical_shard_key(shard_key))
        with self.session_factory() as session:
            return session.get(SyncWatermark, key)

    def list_watermarks(
        self,
        account_id: Optional[str] = None,
        task_type: Optional[str] = None,
    ) -> List[SyncWatermark]:
        stmt = select(SyncWatermark)
        if account_id is not None:
            stmt = stmt.where(SyncWatermark.account_id == account_id)
        if task_type is not None:
            stmt = stmt.where(SyncWatermark.task_type == task_type)
        stmt = stmt.order_by(SyncWatermark.account_id, SyncWatermark.task_type, SyncWatermark.shard_key)
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def get_incremental_window(
        self,
        account_id: str,
        task_type: str,
        shard_key: Union[None, int, str] = NO_SHARD,
        default_lookback_days: int = 7,
        end_boundary: Optional[BoundaryLike] = None,
        timezone: Optional[str] = None,
    ) -> FetchWindow:
        """
        Compute the next window for a key.

        Args:
            default_lookback_days: Window length when the key has never synced
            end_boundary: Explicit inclusive end; defaults to yesterday
            timezone: Overrides the store's timezone for this call

        Returns:
            FetchWindow; is_empty=True means there is nothing new to fetch
        """
        shard = canonical_shard_key(shard_key)
        if end_boundary is not None and end_boundary != "":
            end = parse_boundary(end_boundary)
        else:
            end = yesterday_in(timezone or self.timezone, self.clock())

        state = self.get_watermark(account_id, task_type, shard)
        prior_end = state.last_end_boundary if state is not None else None
        window = compute_window(end, prior_end=prior_end, lookback_units=default_lookback_days)

        logger.debug(
            "Computed incremental window",
            account_id=account_id,
            task_type=task_type,
            shard_key=shard,
            prior_end=prior_end,
            start=window.start,
            end=window.end,
            is_empty=window.is_empty,
        )
        return window

    def upsert_watermark(
        self,
        account_id: str,
        task_type: str,
        shard_key: Union[None, int, str] = NO_SHARD,
        **fields: Any,
    ) -> SyncWatermark:
        """
        Create or update the watermark row for a key.

        Only the fields passed are written on update; passing a field as None
        clears it. On create every field not passed is stored as None.

        Raises:
            PersistenceFailure: If the write fails
        """
        unknown = set(fields) - set(WATERMARK_FIELDS)
        if unknown:
            raise TypeError(f"Unknown watermark fields: {', '.join(sorted(unknown))}")
        if fields.get("last_end_boundary") is not None:
            fields["last_end_boundary"] = parse_boundary(fields["last_end_boundary"])

        shard = canonical_shard_key(shard_key)
        try:
            with self.session_factory() as session:
                row = session.get(SyncWatermark, (account_id, task_type, shard))
                if row is None:
                    row = SyncWatermark(
                        account_id=account_id,
                        task_type=task_type,
                        shard_key=shard,
                        **{name: fields.get(name) for name in WATERMARK_FIELDS},
                    )
                    session.add(row)
                else:
                    for name, value in fields.items():
                        setattr(row, name, value)
                session.commit()
                return row
        except SQLAlchemyError as e:
            logger.error(
                "Failed to write watermark",
                account_id=account_id,
                task_type=task_type,
                shard_key=shard,
                error=str(e),
            )
            raise PersistenceFailure(f"Failed to write watermark for {account_id}/{task_type}/{shard}: {e}") from e

    def acquire_lease(
        self,
        account_id: str,
        task_type: str,
        shard_key: Union[None, int, str],
        owner: str,
        ttl: timedelta = DEFAULT_LEASE_TTL,
    ) -> bool:
        """
        Claim a key for one run. Returns False if another owner holds a live lease.

        A lease held by the same owner is extended; an expired lease is taken over.
        """
        shard = canonical_shard_key(shard_key)
        now = self.clock()
        with self.session_factory() as session:
            result = session.execute(
                update(SyncWatermark)
                .where(
                    SyncWatermark.account_id == account_id,
                    SyncWatermark.task_type == task_type,
                    SyncWatermark.shard_key == shard,
                )
                .where(
                    or_(
                        SyncWatermark.lease_owner.is_(None),
                        SyncWatermark.lease_owner == owner,
                        SyncWatermark.lease_expires_at.is_(None),
                        SyncWatermark.lease_expires_at < now,
                    )
                )
                .values(lease_owner=owner, lease_expires_at=now + ttl)
            )
            if result.rowcount == 1:
                session.commit()
                return True

            if session.get(SyncWatermark, (account_id, task_type, shard)) is not None:
                session.rollback()
                return False

            session.add(SyncWatermark(
                account_id=account_id,
                task_type=task_type,
                shard_key=shard,
                lease_owner=owner,
                lease_expires_at=now + ttl,
            ))
            try:
                session.commit()
            except IntegrityError:
                # Another process created the row between our read and insert.
                session.rollback()
                return False
            return True

    def release_lease(
        self,
        account_id: str,
        task_type: str,
        shard_key: Union[None, int, str],
        owner: str,
    ) -> None:
        shard = canonical_shard_key(shard_key)
        with self.session_factory() as session:
            session.execute(
                update(SyncWatermark)
                .where(
                    SyncWatermark.account_id == account_id,
                    SyncWatermark.task_type == task_type,
                    SyncWatermark.shard_key == shard,
                    SyncWatermark.lease_owner == owner,
                )
                .values(lease_owner=None, lease_expires_at=None)
            )
            session.commit()
