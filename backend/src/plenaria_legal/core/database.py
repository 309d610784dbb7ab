"""
Database engine and session management for Plenaria Legal.

This module provides database connections with pooling, per-request sessions
and transaction handling.
"""

import logging
from typing import Generator
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import SQLAlchemyError
from contextlib import contextmanager

from plenaria_legal.core.config import get_config
from plenaria_legal.core.exceptions import InfrastructureError

config = get_config()
logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    """Create an engine with settings appropriate for the backend."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=config.application.debug,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=config.database.db_pool_size,
        max_overflow=config.database.db_max_overflow,
        pool_timeout=config.database.db_pool_timeout,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,   # Recycle connections every hour
        echo=config.application.debug,
        echo_pool=config.application.debug,
    )


engine = build_engine(config.get_database_url())

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session with proper error handling and cleanup.

    Yields:
        Database session

    Raises:
        SQLAlchemyError: If database connection fails
    """
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Session factory for long-lived consumers such as the live channel."""
    return SessionLocal


@contextmanager
def storage_guard(db: Session, action: str):
    """
    Roll back and surface storage failures as InfrastructureError.

    Domain errors raised inside the block pass through untouched.
    """
    try:
        yield db
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Storage failure while trying to {action}: {e}")
        raise InfrastructureError("Storage temporarily unavailable") from e


def create_tables(bind=None):
    """Create all database tables."""
    try:
        # Import all models to ensure they are registered with SQLAlchemy
        from plenaria_legal.models import Base, User, Consultation, Message  # noqa: F401
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise


def check_database_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        True if connection is successful, False otherwise
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("Database connection check successful")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection check failed: {e}")
        return False


@event.listens_for(engine, "connect")
def set_connection_timeouts(dbapi_connection, connection_record):
    """Bound every statement so no store operation blocks indefinitely."""
    timeout = config.database.db_statement_timeout_seconds
    if config.database.is_sqlite:
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {timeout * 1000}")
        cursor.close()
    else:
        with dbapi_connection.cursor() as cursor:
            cursor.execute(f"SET statement_timeout = '{timeout}s'")
            cursor.execute("SET idle_in_transaction_session_timeout = '600s'")


def initialize_database():
    """Initialize database connection and create tables if needed."""
    try:
        if not check_database_connection():
            raise RuntimeError("Database connection failed")

        create_tables()

        logger.info("Database initialized successfully")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
