"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for accounts, shops, sync watermarks,
fetched records and the job status ledger.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class Account(Base):
    """Vendor tenant account and its cached credentials."""

    __tablename__ = "accounts"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    app_id = Column(String, nullable=False)
    app_secret = Column(String, nullable=False)
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class Shop(Base):
    """Vendor shop (seller) under an account; the shard unit for shop tasks."""

    __tablename__ = "shops"

    account_id = Column(String, primary_key=True)
    sid = Column(Integer, primary_key=True)
    name = Column(String, nullable=True)
    seller_id = Column(String, nullable=True)
    marketplace_id = Column(String, nullable=True)
    country = Column(String, nullable=True)
    status = Column(Integer, nullable=False, default=1)  # 1 = active
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class SyncWatermark(Base):
    """Last fully synced boundary per (account, task, shard)."""

    __tablename__ = "sync_watermarks"

    account_id = Column(String, primary_key=True)
    task_type = Column(String, primary_key=True)
    shard_key = Column(String, primary_key=True)  # "" when the task has no shards
    last_end_boundary = Column(Date, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_record_count = Column(Integer, nullable=True)
    last_status = Column(String, nullable=True)  # success, partial, failed, skipped
    last_error_message = Column(Text, nullable=True)
    lease_owner = Column(String, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class SyncedRecord(Base):
    """One fetched business item, stored as its raw vendor payload."""

    __tablename__ = "synced_records"

    account_id = Column(String, primary_key=True)
    task_type = Column(String, primary_key=True)
    shard_key = Column(String, primary_key=True)
    record_key = Column(String, primary_key=True)
    payload = Column(JSON, nullable=False)
    archived = Column(Boolean, nullable=False, default=False)
    fetched_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class JobTaskStatus(Base):
    """Execution status ledger, one row per scheduled job."""

    __tablename__ = "job_task_status"

    job_name = Column(String, primary_key=True)  # sync-job-<task_type>
    task_type = Column(String, nullable=False)
    last_run_at = Column(DateTime, nullable=True)
    last_status = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)
    next_scheduled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = create_engine(f"sqlite:///{db_path}")
    Session = sessionmaker(bind=engine)
    return Session()


def session_factory(db_path: Path):
    """Return a zero-argument callable that opens a new session on db_path."""
    engine = create_engine(f"sqlite:///{db_path}")
    # Rows returned by the stores are read after their session closes.
    return sessionmaker(bind=engine, expire_on_commit=False)
