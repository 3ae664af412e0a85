"""Database connection and unit-of-work management."""

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated, Any

from fastapi import Depends, Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gradebook.core.config import Settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Database:
    """Engine and session factory owned by one application instance.

    Nothing here is module-global: the application builds one ``Database``
    from its settings and every operation receives a session from it.
    """

    def __init__(self, url: str, **engine_kwargs: Any):
        self.url = url
        self.engine: Engine = create_engine(url, **engine_kwargs)
        self.session_factory = sessionmaker(
            bind=self.engine,
            class_=Session,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build a database handle from application settings."""
        if settings.is_sqlite:
            # A single shared connection keeps in-memory databases alive
            return cls(
                settings.DATABASE_URL,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return cls(
            settings.DATABASE_URL,
            echo=False,
            pool_pre_ping=True,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )

    def create_all(self) -> None:
        """Create all tables (used by tests and local bootstrap)."""
        # Import models so every table is registered on the metadata
        import gradebook.models  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """Open a session whose writes commit or roll back together."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Generator[Session, None, None]:
    """Get database session dependency, one unit of work per request."""
    database: Database = request.app.state.database
    with database.unit_of_work() as session:
        yield session


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]
