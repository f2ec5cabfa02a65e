"""
Local persistence for fetched business records.

Each item is stored as its raw vendor payload under a record key derived from
the task's identity fields. Pages are written as they arrive so a crash
mid-run keeps what was already fetched.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .database import SyncedRecord
from .errors import PersistenceFailure
from .logger import get_logger

logger = get_logger()


def diff_dict(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    changed = {}
    keys = set(old.keys()) | set(new.keys())
    for k in keys:
        ov = old.get(k)
        nv = new.get(k)
        if ov != nv:
            changed[k] = {"old": ov, "new": nv}
    return changed


def record_key_for(item: Dict[str, Any], key_fields: Sequence[str] = ()) -> str:
    """Join the identity fields; fall back to a content hash when any is missing."""
    if key_fields and all(item.get(f) not in (None, "") for f in key_fields):
        return "|".join(str(item[f]) for f in key_fields)
    canonical = json.dumps(item, sort_keys=True, ensure_ascii=False, default=str)
    return "sha1:" + hashlib.sha1(canonical.encode("utf-8")).hexdigest()


def update_record(session, account_id: str, task_type: str, shard_key: str,
                  record_key: str, payload: Dict[str, Any]) -> str:
    """Upsert one record inside an open session; returns new, updated or no-change."""
    row = session.get(SyncedRecord, (account_id, task_type, shard_key, record_key))
    if row is None:
        session.add(SyncedRecord(
            account_id=account_id,
            task_type=task_type,
            shard_key=shard_key,
            record_key=record_key,
            payload=payload,
            archived=False,
            fetched_at=datetime.now(),
        ))
        return "new"
    if diff_dict(row.payload or {}, payload) or row.archived:
        row.payload = payload
        row.archived = False
        return "updated"
    return "no-change"


def save_records(
    session_factory,
    account_id: str,
    task_type: str,
    shard_key: str,
    items: Iterable[Dict[str, Any]],
    key_fields: Sequence[str] = (),
) -> Dict[str, int]:
    """
    Upsert a batch of items in one transaction.

    Returns:
        Counts by outcome: {"new": n, "updated": n, "no-change": n}

    Raises:
        PersistenceFailure: If the transaction fails
    """
    counts = {"new": 0, "updated": 0, "no-change": 0}
    try:
        with session_factory() as session:
            # Pages can repeat an item; the last copy wins.
            batch = {}
            for item in items:
                batch[record_key_for(item, key_fields)] = item
            for record_key, item in batch.items():
                status = update_record(session, account_id, task_type, shard_key, record_key, item)
                counts[status] += 1
            session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(
            f"Failed to save {task_type} records for {account_id}/{shard_key or '-'}: {e}"
        ) from e
    return counts


class RecordWriter:
    """
    Page hook that saves each page and keeps running totals.

    Args:
        session_factory: SQLAlchemy sessionmaker
        account_id: Owning account
        task_type: Task the records belong to
        shard_key: Canonical shard key ("" for account-level tasks)
        key_fields: Item fields that identify a record
    """

    def __init__(self, session_factory, account_id: str, task_type: str,
                 shard_key: str, key_fields: Sequence[str] = ()):
        self.session_factory = session_factory
        self.account_id = account_id
        self.task_type = task_type
        self.shard_key = shard_key
        self.key_fields = tuple(key_fields)
        self.totals = {"new": 0, "updated": 0, "no-change": 0}

    def __call__(self, items: Sequence[Dict[str, Any]]) -> None:
        if not items:
            return
        counts = save_records(
            self.session_factory,
            self.account_id,
            self.task_type,
            self.shard_key,
            items,
            key_fields=self.key_fields,
        )
        for status, n in counts.items():
            self.totals[status] += n
        logger.debug(
            "Saved page",
            task_type=self.task_type,
            account_id=self.account_id,
            shard_key=self.shard_key,
            **counts,
        )
