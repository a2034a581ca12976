from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from rowqueue.common.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def make_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def create_schema(engine):
    # models must be imported so the table is registered on Base.metadata
    from rowqueue.db import models  # noqa: F401

    Base.metadata.create_all(engine)
