"""
Database engine + session factory for the command center's own tables.

Tenant databases are reached over REST (services.supabase); this engine only
backs the sync retry queue. Defaults to SQLite for local dev, Postgres in
production.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from command_center.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Heroku-style postgres:// URLs are rejected by SQLAlchemy 2.x
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


def init_db():
    """Create missing tables (sync_failures)."""
    import command_center.models.sync_failure  # noqa: F401
    Base.metadata.create_all(engine)
