import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .base import Base


def _database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///estate_vision.db")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(_database_url(), **_engine_kwargs(_database_url()))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
