import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

class Config:
    """League scoring configuration settings"""
    
    # Discord settings (operator bot)
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///queen_league.db')
    
    # Logging
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    
    # Recalculation locking
    REDIS_URL = os.getenv('REDIS_URL')
    RECALC_LOCK_TTL_SECONDS = int(os.getenv('RECALC_LOCK_TTL_SECONDS', 300))
    REBUILD_LOCK_WAIT_SECONDS = float(os.getenv('REBUILD_LOCK_WAIT_SECONDS', 30))
    STANDINGS_REBUILD_STRATEGY = os.getenv('STANDINGS_REBUILD_STRATEGY', 'incremental').lower()
    
    # Scoring settings
    DEFAULT_RANK_MULTIPLIERS = {1: 2.0, 2: 1.5, 3: 1.0, 4: 0.5}
    FALLBACK_MULTIPLIER = 1.0  # Ranks without a configured multiplier
    MAX_RANK_MULTIPLIER = float(os.getenv('MAX_RANK_MULTIPLIER', 1000))
    ROSTER_MAX_RANK = 4
    POINTS_PRECISION = Decimal('0.01')
    DEFAULT_EPISODE = 1
    
    # Settings table keys
    MULTIPLIER_KEY_PREFIX = 'multiplier_rank_'
    CURRENT_EPISODE_KEY = 'current_episode'
    
    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []
    
    @classmethod
    def multiplier_key(cls, rank: int) -> str:
        return f"{cls.MULTIPLIER_KEY_PREFIX}{rank}"
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.STANDINGS_REBUILD_STRATEGY not in ('incremental', 'full'):
            raise ValueError("STANDINGS_REBUILD_STRATEGY must be 'incremental' or 'full'")
