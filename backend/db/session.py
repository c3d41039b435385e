"""
SQLAlchemy engine and session factory for the account / payment store.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")
_in_memory = _is_sqlite and settings.DATABASE_URL.rstrip("/") in ("sqlite:", "sqlite:///:memory:")

_engine_kwargs = {}
if _is_sqlite:
    # Sessions are opened from worker threads
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
    if _in_memory:
        # Every session must see the same in-memory database
        _engine_kwargs["poolclass"] = StaticPool
else:
    _engine_kwargs["pool_pre_ping"] = True  # health-check connections for PostgreSQL

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
