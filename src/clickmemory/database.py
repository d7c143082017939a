import pathlib

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from src.clickmemory.config import DATABASE_URL, STORAGE_TIMEOUT_SECONDS

# Ensure the data directory exists when using the default SQLite path.
# This runs at import time so both `alembic upgrade head` and the app itself
# can create the file without an explicit `mkdir`.
if DATABASE_URL.startswith("sqlite:///"):
    _db_path = pathlib.Path(DATABASE_URL[len("sqlite:///"):])
    _db_path.parent.mkdir(parents=True, exist_ok=True)

_connect_args: dict = {}
if DATABASE_URL.startswith("sqlite"):
    # Request handlers and the token sweeper run on worker threads, so the
    # same SQLite connection may be used from more than one thread.
    _connect_args["check_same_thread"] = False
    _connect_args["timeout"] = STORAGE_TIMEOUT_SECONDS
elif DATABASE_URL.startswith("postgresql"):
    # Bound connect and statement time.
    _connect_args["connect_timeout"] = int(STORAGE_TIMEOUT_SECONDS)
    _connect_args["options"] = f"-c statement_timeout={int(STORAGE_TIMEOUT_SECONDS * 1000)}"

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Declarative base class shared by all ORM models."""


def get_db():
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
