"""Declarative base, async engine, and the process-wide session factory."""

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from thesisflow.core.config import get_settings

# Same constraint names on SQLite (tests) and PostgreSQL
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str) -> dict:
    """Pool settings per backend. In-memory SQLite needs one shared connection."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


def bind_engine(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Install ``engine`` as the shared engine and return its session factory."""
    global _engine, _session_factory

    _engine = engine
    _session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def create_schema(engine: AsyncEngine) -> None:
    # Import all models so metadata is populated before create_all
    import thesisflow.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: str | None = None, create_tables: bool = True) -> None:
    """Create the shared engine once per process.

    Tables are created from metadata; there is no migration history.
    """
    if _engine is not None:
        return

    settings = get_settings()
    db_url = url or settings.database_url
    engine = create_async_engine(db_url, echo=settings.debug, **engine_options(db_url))
    bind_engine(engine)

    if create_tables:
        await create_schema(engine)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() or bind_engine() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
