"""Database session and engine configuration."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.db.base import Base


def build_engine(database_url: str = None, **kwargs) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = database_url or settings.DATABASE_URL
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
    else:
        # Busy timeout doubles as the lock-wait ceiling on SQLite
        options["connect_args"] = {"timeout": settings.INTAKE_LOCK_TIMEOUT_SECONDS}
    options.update(kwargs)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine()

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a read-only database session."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(bind: AsyncEngine = None):
    """Initialize database tables (development only, production uses Alembic)."""
    # Import all models to register them
    from app.models import application, project, user  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
