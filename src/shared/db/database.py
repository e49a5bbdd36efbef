"""
Database utility for connecting to and interacting with the database.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.db.models import Base
from shared.utils.configs import db_configs
from shared.utils.errors import DatabaseError, PipelineError
from shared.utils.helpers import prepare_database_url
from shared.utils.logger import logger


class Database:
    """Database is a service class.

    Responsible for managing database interactions for the Task Store and the
    Shipment Event Store: creating tables, handing out transactional
    connections and sessions, and disposing of the engine.

    Attributes:
        engine (AsyncEngine): The SQLAlchemy asynchronous engine for database connections.
        async_session (async_sessionmaker): The session maker for creating asynchronous sessions.
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Args:
            database_url: Overrides PG_DATABASE_URL (used by tests and the local CLI)
        """
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.async_session: Optional[async_sessionmaker] = None
        self._init_lock: Optional[asyncio.Lock] = None

    @property
    def dialect_name(self) -> str:
        if not self.engine:
            raise DatabaseError(message="Database has not been initialized")
        return self.engine.dialect.name

    async def initialize(self):
        """Initialize the database engine and session maker, creating tables if needed."""
        if self.engine:
            return self

        if self._init_lock is None:
            self._init_lock = asyncio.Lock()

        async with self._init_lock:
            if self.engine:
                return self

            engine = None
            try:
                db_url, connect_args = prepare_database_url(
                    self.database_url or db_configs["pg_database_url"]
                )
                engine_options = {"echo": db_configs["echo"], "connect_args": connect_args}
                if not db_url.startswith("sqlite"):
                    engine_options.update(
                        pool_size=db_configs["pool_size"],
                        max_overflow=db_configs["max_overflow"],
                        pool_timeout=db_configs["pool_timeout"],
                        pool_recycle=db_configs["pool_recycle"],
                        pool_pre_ping=db_configs["pool_pre_ping"],
                    )

                engine = create_async_engine(db_url, **engine_options)

                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)

                self.async_session = async_sessionmaker(
                    engine, class_=AsyncSession, expire_on_commit=False
                )
                # engine is only set once the tables exist
                self.engine = engine

                logger.info("Successfully initialized database connection")
                return self

            except Exception as e:
                logger.error(f"Failed to initialize database: {str(e)}")
                if engine is not None:
                    await engine.dispose()
                raise DatabaseError(message=f"Failed to initialize database: {str(e)}")

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection, None]:
        """Connection wrapped in a single transaction, committed on exit."""
        if not self.engine:
            await self.initialize()

        try:
            async with self.engine.begin() as conn:
                yield conn
        except PipelineError:
            raise
        except Exception as e:
            logger.error(f"Error in database transaction: {str(e)}")
            raise DatabaseError(message=f"Database transaction error: {str(e)}")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for ORM sessions, used for read paths."""
        if not self.engine:
            await self.initialize()

        session = self.async_session()
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Error in database session: {str(e)}")
            await session.rollback()
            if isinstance(e, PipelineError):
                raise
            raise DatabaseError(message=f"Database session error: {str(e)}")
        finally:
            await session.close()

    async def close(self):
        """Close the database connection."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            logger.info("Database connection closed")
        # The lock belongs to the event loop that is about to end
        self._init_lock = None


# Create a global database instance
db = Database()
