from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from formflow.core.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine for DATABASE_URL (SQLite and PostgreSQL supported)."""
    url = make_url(database_url)
    backend = url.get_backend_name()
    connect_args: dict = {}
    kwargs: dict = {}
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"
        kwargs["pool_pre_ping"] = True
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database in (None, "", ":memory:"):
            # One shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """Create all tables (no migrations for the worker schema)."""
    from formflow.db.base import Base
    from formflow.db import models  # noqa: F401  (register tables)

    Base.metadata.create_all(bind=bind or engine)
