from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dependency_engine.db")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Jobs are processed on worker threads, not the thread that opened the connection.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


class Base(DeclarativeBase):
    pass


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
