from collections.abc import Iterator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from .settings import settings


def build_engine(database_url: str):
    """Create an engine; in-memory SQLite gets a single shared connection."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.database_url)


def create_db_and_tables(bind=None) -> None:
    # Import models so every table is registered on the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def check_db_connection() -> None:
    with Session(engine) as session:
        session.execute(text("SELECT 1"))


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
