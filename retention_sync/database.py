from functools import lru_cache

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Load .env file (DATABASE_URL lives there)
load_dotenv()

Base = declarative_base()


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the given URL.

    SQLite only enforces foreign keys when asked to, and the stores rely on
    foreign key violations to detect parents that are not committed yet.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        future=True,
        echo=echo,  # set True if you want to see SQL in terminal
        pool_pre_ping=not database_url.startswith("sqlite"),
        connect_args=connect_args,
    )

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        future=True,
        expire_on_commit=False,
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    from retention_sync.config import get_settings

    return make_engine(get_settings().DATABASE_URL)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    """Process-wide session factory. Each store call opens its own session from it."""
    return make_session_factory(get_engine())


def init_db(engine: Engine | None = None) -> None:
    """
    Import models and create tables if they don't exist.
    Alembic is the real migration tool, but this keeps local dev sane.
    """
    from retention_sync import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
