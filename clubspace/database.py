# clubspace/database.py
from datetime import datetime
import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_backend_engine(settings: Settings) -> Engine:
    """
    Create the engine for the backend database.

    SQLite in-memory databases share one connection (StaticPool) so every
    session sees the same data, matching how the unit tests run.
    """
    if settings.is_sqlite:
        engine = create_engine(
            settings.database_url,
            echo=settings.database_echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=5,
            max_overflow=5,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create all tables. Imports models so Base.metadata is populated."""
    from . import models  # noqa: F401

    Base.metadata.create_all(engine)
