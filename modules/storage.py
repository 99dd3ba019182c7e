"""
Persistence layer.
SQLAlchemy models for the search-credit ledger, supporters, pre-payments
and cached recommendation results.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Float, Integer, JSON, String, create_engine
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config

logger = logging.getLogger(__name__)

Base = declarative_base()


class StorageError(Exception):
    """Raised when the database cannot be reached or a write fails."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchRecord(Base):
    """One row per IP address: how many free searches it has used."""
    __tablename__ = "ip_searches"

    ip_address = Column(String(64), primary_key=True)
    search_count = Column(Integer, nullable=False, default=0)
    last_search = Column(DateTime(timezone=True), nullable=True)
    visitor_uuid = Column(String(36), nullable=True, index=True)


class Supporter(Base):
    """A verified one-time payment that unlocks unlimited searches."""
    __tablename__ = "supporters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=True, index=True)
    visitor_uuid = Column(String(36), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True, index=True)
    transaction_id = Column(String(128), nullable=False, unique=True)
    amount = Column(Float, nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    unlimited_searches = Column(Boolean, nullable=False, default=False)
    support_type = Column(String(64), nullable=True)
    support_status = Column(String(32), nullable=True)
    support_date = Column(DateTime(timezone=True), default=utcnow)
    details = Column(JSON, nullable=True)


class PrePayment(Base):
    """Visitor UUID and email recorded before the visitor goes to pay."""
    __tablename__ = "pre_payments"

    visitor_uuid = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class CachedRecommendation(Base):
    __tablename__ = "recommendation_cache"

    preferences_hash = Column(String(64), primary_key=True)
    results = Column(JSON, nullable=False)
    perfect_match = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or Config.DATABASE_URL

        engine_kwargs = {}
        if self.url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.url or self.url == "sqlite://":
                # Share one connection so every session sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.url, **engine_kwargs)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create missing tables (existing ones are left alone)."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("✓ Database ready (%s)", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Raises:
            StorageError: If the database operation fails
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError:
            # Callers use unique-key violations to detect races
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Database error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on read; treat naive timestamps as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def init_db(url: Optional[str] = None) -> Database:
    """Create the engine for url (default Config.DATABASE_URL) and its tables."""
    db = Database(url)
    db.create_tables()
    return db
