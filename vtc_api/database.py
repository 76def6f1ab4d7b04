from typing import Optional

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

logger = structlog.get_logger(component="database")

Base = declarative_base()


def mask_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable url>"


class Database:
    """Async engine holder with explicit connected / not connected state.

    The rest of the application must keep working when the database is down,
    so ``connect`` never raises: it logs and leaves the instance disconnected.
    """

    def __init__(self, url: Optional[str]):
        self.url = url
        self.engine: Optional[AsyncEngine] = None
        self.SessionLocal: Optional[async_sessionmaker] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        if not self.url:
            logger.warning("DATABASE_URL is not set, persistence disabled")
            return False

        connect_args = {}
        engine_kwargs = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            engine_kwargs["poolclass"] = NullPool

        try:
            self.engine = create_async_engine(
                self.url, connect_args=connect_args, **engine_kwargs
            )
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, ImportError, OSError, ValueError) as e:
            logger.error(
                "database connection failed",
                error=str(e),
                url=mask_url(self.url),
            )
            logger.warning("server keeps running without a database")
            await self._dispose_engine()
            return False

        self.SessionLocal = async_sessionmaker(
            self.engine, autoflush=False, expire_on_commit=False
        )
        self._connected = True
        logger.info("database connected", url=mask_url(self.url))
        return True

    async def disconnect(self) -> None:
        await self._dispose_engine()
        if self._connected:
            logger.info("database connection closed")
        self._connected = False

    async def _dispose_engine(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self.SessionLocal = None
