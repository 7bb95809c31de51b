from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from voapi_relay.config.settings import Settings
from voapi_relay.models.artifacts import Base


def create_engine(settings: Settings) -> AsyncEngine:
    url = settings.sqlalchemy_url
    if url.get_backend_name() == "sqlite":
        # SQLite has no server-side pool to bound
        return create_async_engine(url, echo=settings.debug, future=True, hide_parameters=True)

    return create_async_engine(
        url,
        echo=settings.debug,
        future=True,
        hide_parameters=True,   # bound values hold session cookies and token keys
        pool_size=settings.db_pool_size,  # hard cap on concurrent connections
        max_overflow=0,
        pool_pre_ping=True,     # Validate connections before use
        pool_recycle=3600,      # Recycle connections after 1 hour
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create the tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_schema(settings: Settings) -> None:
    """Create the schema with a short-lived engine, used before the server starts."""
    engine = create_engine(settings)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
