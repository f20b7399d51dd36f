from typing import Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, func

from queen_league.config import Config
from queen_league.database.models import Base, User, Setting
from queen_league.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None
        
    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")
        
        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        
        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG
        )
        
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        
        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            
        self.logger.info("Database initialized successfully")
        
        await self.initialize_default_data()
    
    @property
    def session_factory(self):
        return self.async_session
    
    async def initialize_default_data(self):
        """Seed the settings rows the scoring engine reads"""
        async with self.transaction() as session:
            result = await session.execute(select(func.count()).select_from(Setting))
            if result.scalar() == 0:
                self.logger.info("Initializing default settings...")
                defaults = {Config.CURRENT_EPISODE_KEY: str(Config.DEFAULT_EPISODE)}
                for rank, multiplier in Config.DEFAULT_RANK_MULTIPLIERS.items():
                    defaults[Config.multiplier_key(rank)] = str(multiplier)
                for key, value in defaults.items():
                    session.add(Setting(key=key, value=value))
                self.logger.info(f"Added {len(defaults)} default settings")
    
    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()
    
    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.
        
        All operations within the context are committed together on success,
        or rolled back together on failure. Readers in other sessions never
        observe the intermediate state.
        
        Usage:
            async with db.transaction() as session:
                await score_ops.upsert_episode_scores(session, ...)
                await score_ops.rebuild_standings(session, ...)
                # Both commit together here
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()
    
    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")
    
    # User operations
    async def set_user_active(self, user_id: int, is_active: bool) -> bool:
        """Show or hide a user on leaderboards. Returns False if the user does not exist."""
        async with self.transaction() as session:
            user = await session.get(User, user_id)
            if not user:
                return False
            user.is_active = is_active
            return True
