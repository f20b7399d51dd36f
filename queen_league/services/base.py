"""
Base service class for the league scoring services.

Provides async database session management and retry logic for the
read-only snapshot queries a recalculation run depends on.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Any
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def is_transient_error(error: Exception) -> bool:
    """Locked database, dropped connection and similar errors worth a retry."""
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class BaseService:
    """Base class for all services with async database session management."""
    
    def __init__(self, session_factory):
        """
        Initialize base service with session factory.
        
        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory
    
    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
    
    async def execute_with_retry(self, func: Callable, max_retries: int = 3,
                                 base_delay: float = 0.1) -> Any:
        """
        Run an idempotent read, retrying transient database errors.
        
        Other SQLAlchemy errors (bad SQL, constraint violations) are raised on
        the first attempt. Writes never go through here.
        """
        for attempt in range(max_retries):
            try:
                return await func()
            except DBAPIError as e:
                if not is_transient_error(e) or attempt == max_retries - 1:
                    raise
                logger.warning(f"Transient database error in {func.__name__}, retry {attempt + 1}: {e}")
                await asyncio.sleep(base_delay * (2 ** attempt))
