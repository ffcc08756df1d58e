"""
SQLAlchemy engine, session factory and declarative base.

The engine owns three tables (policies, evaluations, runs) and reads the
ingestion-owned catalog tables. Local dev falls back to a SQLite file;
production points DATABASE_URL at PostgreSQL.
"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from catalog_policy.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_ECHO


class Base(DeclarativeBase):
    pass


def normalize_database_url(raw: str) -> str:
    """SQLAlchemy 2.x only accepts the postgresql:// scheme."""
    if raw.startswith('postgres://'):
        return 'postgresql://' + raw[len('postgres://'):]
    return raw


def engine_options(database_url: str) -> dict:
    if database_url.startswith('sqlite'):
        # RQ workers and the Flask dev server share the file across threads
        return {'connect_args': {'check_same_thread': False}, 'echo': DB_ECHO}
    return {
        'pool_pre_ping': True,
        'pool_size': DB_POOL_SIZE,
        'max_overflow': DB_MAX_OVERFLOW,
        'echo': DB_ECHO,
    }


url = normalize_database_url(DATABASE_URL)
engine = create_engine(url, **engine_options(url))

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """New session; callers commit/rollback and always close it."""
    return SessionLocal()


def utcnow():
    """Timezone-aware UTC now, used for every timestamp the engine writes."""
    return datetime.now(timezone.utc)
