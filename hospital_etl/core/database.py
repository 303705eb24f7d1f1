from functools import lru_cache
from typing import Generator

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from hospital_etl.core.config import get_settings
from hospital_etl.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache
def get_engine() -> Engine:
    settings = get_settings()
    kwargs = {"echo": settings.database_echo}

    if settings.database_url.startswith("sqlite"):
        # in-memory sqlite must share one connection across sessions
        kwargs["connect_args"] = {"check_same_thread": False}
        if settings.database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    return create_engine(settings.database_url, **kwargs)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), class_=Session, autoflush=False)


def init_db(engine: Engine = None) -> None:
    # registers every table model on SQLModel.metadata
    from hospital_etl.infrastructure.db import models  # noqa: F401

    SQLModel.metadata.create_all(engine or get_engine())
    logger.info("Database tables initialized")


def get_session() -> Generator[Session, None, None]:
    SessionLocal = get_session_factory()
    with SessionLocal() as session:
        yield session
