from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def make_engine(database_url: str) -> sa.Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # sessions are opened from log-feeding threads
        connect_args["check_same_thread"] = False
    return sa.create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


def make_sessionmaker(engine: sa.Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)


def create_schema(engine: sa.Engine) -> None:
    Base.metadata.create_all(engine)
