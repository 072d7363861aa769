"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (including in-memory SQLite)
- Table definitions for user properties and their assignments
"""
import logging
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, event, MetaData, Table, Column, String, DateTime, JSON, Text, Index, ForeignKey, UniqueConstraint, text
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from userprops.core.config import settings
from userprops.core.logging import LOGGER_NAME


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


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


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

    if make_url(url).get_backend_name() == "sqlite":
        # One shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.SQL_ECHO,
        )
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=settings.SQL_ECHO,
        )

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

    Commits on clean exit, rolls back on any exception.
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


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


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
        logging.getLogger(LOGGER_NAME).warning(f"Database connection check failed: {e}")
        return False


# User property definitions, one row per (workspace, name)
user_properties = Table(
    'user_properties',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('workspace_id', String(100), nullable=False),
    Column('name', String(255), nullable=False),
    Column('definition', JSON, nullable=False),
    Column('definition_updated_at', DateTime(timezone=True), nullable=True),
    Column('example_value', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('workspace_id', 'name', name='uq_user_properties_workspace_name'),
    # Listing pattern: (workspace_id, name)
    Index('idx_user_properties_workspace_name', 'workspace_id', 'name'),
)

# Materialized values, written by the computation subsystem
user_property_assignments = Table(
    'user_property_assignments',
    metadata,
    Column('user_property_id', String(36), ForeignKey('user_properties.id', ondelete='CASCADE'), primary_key=True),
    Column('user_id', String(255), primary_key=True),
    Column('workspace_id', String(100), nullable=False),
    Column('value', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Value lookup pattern: (workspace_id, user_property_id)
    Index('idx_user_property_assignments_workspace_property', 'workspace_id', 'user_property_id'),
)
