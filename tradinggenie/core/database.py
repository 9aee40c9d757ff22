"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- In-memory SQLite support for tests
- Table definitions for subscribers, subscription records and webhook failures
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, ForeignKey
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from tradinggenie.core.config import settings


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


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "poolclass": QueuePool,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": POOL_TIMEOUT,
        "pool_recycle": POOL_RECYCLE,
    }


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

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(url, echo=False, **_engine_kwargs(url))

    # Create session factory
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


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
            session.commit()
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


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with get_engine().connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception:
        return False


# ============================================================================
# TABLE DEFINITIONS
# ============================================================================

# Subscribers. The current subscription summary lives on the user row.
users = Table(
    'users',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('telegram_username', String(100), nullable=False),
    Column('telegram_chat_id', String(100), nullable=False),
    Column('subscription_plan', String(50), nullable=True),
    Column('subscription_status', String(50), nullable=True),
    Column('stripe_customer_id', String(100), nullable=True),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('subscription_created_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_stripe_subscription_id', 'stripe_subscription_id'),
    Index('idx_users_subscription_status', 'subscription_status'),
)

# Subscription records. Not unique on stripe_subscription_id: redelivered
# checkout events append a second row (flagged in webhook_failures).
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False),
    Column('plan', String(50), nullable=False),
    Column('status', String(50), nullable=False),
    Column('stripe_subscription_id', String(100), nullable=False),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, default=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_subscriptions_user_id', 'user_id'),
    Index('idx_subscriptions_stripe_id', 'stripe_subscription_id'),
)

# Swallowed webhook handler failures and flagged anomalies
webhook_failures = Table(
    'webhook_failures',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(100), nullable=True),
    Column('event_type', String(100), nullable=False),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('kind', String(50), nullable=False),  # handler_error, notification_failed, duplicate_delivery
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_webhook_failures_created_at', 'created_at'),
    Index('idx_webhook_failures_kind', 'kind'),
)
