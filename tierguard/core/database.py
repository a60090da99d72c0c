"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for the monetization store
"""
from typing import Callable, Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, CheckConstraint, ForeignKey, text, true
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from tierguard.core.config import settings


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

SessionFactory = Callable[[], Session]

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


def build_engine(url: str) -> Engine:
    """Create an engine with pooling suited to the URL's dialect."""
    if url.startswith("sqlite"):
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # One shared connection so every session sees the same in-memory DB
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


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

    _engine = build_engine(url)
    _SessionLocal = make_session_factory(_engine)

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
def get_db_session(session_factory: Optional[SessionFactory] = None):
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = session_factory or get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())



def check_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        eng = engine or get_engine()
        with eng.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


# Subscription plan catalog (seeded out-of-band, read-only to the policy core)
subscription_plans = Table(
    'subscription_plans',
    metadata,
    Column('id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('videos_generated_limit', Integer, nullable=False, server_default='0'),
    Column('source_videos_limit', Integer, nullable=False, server_default='0'),
    Column('voice_clones_limit', Integer, nullable=False, server_default='0'),
    Column('account_analysis_limit', Integer, nullable=False, server_default='0'),
    Column('script_conversations_limit', Integer, nullable=False, server_default='0'),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Feature flags (admin-mutated)
feature_flags = Table(
    'feature_flags',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('required_plan', String(50), ForeignKey('subscription_plans.id'), nullable=True),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_feature_flags_active', 'is_active'),
)

# Per-user quota counters
user_usage = Table(
    'user_usage',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('current_plan_id', String(50), ForeignKey('subscription_plans.id'), nullable=False),
    Column('videos_generated', Integer, nullable=False, server_default='0'),
    Column('videos_generated_limit', Integer, nullable=False),
    Column('source_videos_used', Integer, nullable=False, server_default='0'),
    Column('source_videos_limit', Integer, nullable=False),
    Column('voice_clones_used', Integer, nullable=False, server_default='0'),
    Column('voice_clones_limit', Integer, nullable=False),
    Column('account_analysis_used', Integer, nullable=False, server_default='0'),
    Column('account_analysis_limit', Integer, nullable=False),
    Column('script_conversations_used', Integer, nullable=False, server_default='0'),
    Column('script_conversations_limit', Integer, nullable=False),
    Column('subscription_status', String(50), nullable=False, server_default='active'),
    Column('next_reset_date', DateTime(timezone=True), nullable=False),
    Column('last_reset_date', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    CheckConstraint('videos_generated >= 0', name='ck_user_usage_videos_generated'),
    CheckConstraint('source_videos_used >= 0', name='ck_user_usage_source_videos_used'),
    CheckConstraint('voice_clones_used >= 0', name='ck_user_usage_voice_clones_used'),
    CheckConstraint('account_analysis_used >= 0', name='ck_user_usage_account_analysis_used'),
    CheckConstraint('script_conversations_used >= 0', name='ck_user_usage_script_conversations_used'),
    # Index for finding all users on a plan
    Index('idx_user_usage_plan_id', 'current_plan_id'),
)
