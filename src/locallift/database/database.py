import contextlib
from typing import AsyncContextManager, AsyncIterator, Callable

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from locallift.batches.errors import StoreUnavailableError
from locallift.main.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class DatabaseSessionManager:
    def __init__(self):
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    def init(self, host: str):
        # If already initialized, don't reinitialize (important for tests)
        if self._engine is not None:
            logger.debug("Database already initialized, skipping reinitialization")
            return

        self._engine = create_async_engine(host, pool_size=20, max_overflow=10)
        self._sessionmaker = async_sessionmaker(
            autocommit=False,
            bind=self._engine,
            autobegin=False,
        )
        logger.debug(f"Database connected to {self._engine.url.host}")

    async def close(self):
        if self._engine is None:
            logger.debug("DatabaseSessionManager already closed or not initialized")
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.debug("DatabaseSessionManager closed")

    @contextlib.asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        if self._engine is None:
            raise StoreUnavailableError("DatabaseSessionManager is not initialized")

        async with self._engine.begin() as connection:
            try:
                yield connection
            except Exception:
                await connection.rollback()
                raise

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._sessionmaker is None:
            raise StoreUnavailableError("DatabaseSessionManager is not initialized")

        session = self._sessionmaker()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


sessionmanager = DatabaseSessionManager()


@contextlib.asynccontextmanager
async def transaction(session_factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Open a short-lived session with a transaction around it.

    Connection-level failures surface as ``StoreUnavailableError`` so callers
    can tell an unreachable store apart from a bad statement.
    """
    try:
        async with session_factory() as session, session.begin():
            yield session
    except (OperationalError, InterfaceError, OSError) as exc:
        logger.error(
            "Store unavailable",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )
        raise StoreUnavailableError(str(exc)) from exc


async def create_tables():
    from locallift.database.tables import Base

    async with sessionmanager.connect() as connection:
        await connection.run_sync(Base.metadata.create_all)
