"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Table definitions for users, payments, usage and recordings
- Timezone helpers (all timestamps are stored as UTC)
"""
from datetime import datetime, timezone
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, ForeignKey, UniqueConstraint, text
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
import logging

from voxpost.core.config import settings

logger = logging.getLogger("voxpost")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored timestamp to aware UTC.

    SQLite hands back naive datetimes; PostgreSQL returns aware ones.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_database_url() -> Optional[str]:
    """Get the database URL from settings."""
    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    connect_args = {}
    if url.startswith("sqlite"):
        # Pooled connections are handed to FastAPI's worker threads
        connect_args["check_same_thread"] = False

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        connect_args=connect_args,
        echo=False,  # Set to True for SQL query logging
    )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests, shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users and plan state
users = Table(
    'users',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('password_hash', String(255), nullable=True),  # null for external-auth users
    Column('name', String(255), nullable=True),
    Column('phone', String(32), nullable=True),
    Column('provider', String(50), nullable=False, server_default='local'),
    Column('plan_type', String(20), nullable=False, server_default='free'),
    Column('minutes_remaining', Integer, nullable=False, server_default='30'),
    Column('unlimited_minutes', Boolean, nullable=False, server_default=text('false')),
    Column('plan_expires_at', DateTime(timezone=True), nullable=True),
    Column('is_premium', Boolean, nullable=False, server_default=text('false')),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, nullable=False),
    # Expiry sweep and admin lookups by tier
    Index('idx_users_plan_expires_at', 'plan_expires_at'),
)


# Payment orders (never deleted; financial audit trail)
payment_orders = Table(
    'payment_orders',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('order_id', String(100), nullable=False),
    # No FK: orders outlive account deletion
    Column('user_id', Integer, nullable=False, index=True),
    Column('plan_type', String(20), nullable=False),
    Column('amount', Integer, nullable=False),  # minor units (paisa)
    Column('status', String(20), nullable=False, server_default='created'),
    Column('paid_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, nullable=False),
    UniqueConstraint('order_id', name='uq_payment_orders_order_id'),
    Index('idx_payment_orders_user_created', 'user_id', 'created_at'),
)


# Append-only minute ledger
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', Integer, nullable=False),
    Column('duration_seconds', Integer, nullable=False),
    Column('remaining_minutes', Integer, nullable=True),  # NULL = unlimited balance
    Column('request_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    UniqueConstraint('request_id', name='uq_usage_records_request_id'),
    Index('idx_usage_records_user_created', 'user_id', 'created_at'),
)


# Processed voice clips
recordings = Table(
    'recordings',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('transcript', Text, nullable=False),
    Column('processed_content', Text, nullable=False),
    Column('duration_seconds', Integer, nullable=True),
    Column('file_size', Integer, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Index('idx_recordings_user_created', 'user_id', 'created_at'),
)


# Inbound gateway webhook deliveries
payment_events = Table(
    'payment_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_type', String(100), nullable=True),
    Column('order_id', String(100), nullable=True, index=True),
    Column('payload_hash', String(64), nullable=False),
    Column('signature_valid', Boolean, nullable=False),
    Column('processed', Boolean, nullable=False, server_default=text('false')),
    Column('outcome', String(50), nullable=True),
    Column('error', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Index('idx_payment_events_received_at', 'received_at'),
)
