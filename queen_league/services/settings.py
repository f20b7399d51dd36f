"""
Settings service for the league scoring engine.

Serves the flat key -> string settings table (current episode, rank
multipliers) with in-memory caching and an audit trail for changes.
"""

import json
import logging
from typing import Dict, Mapping, Optional
from sqlalchemy import select
from queen_league.config import Config
from queen_league.services.base import BaseService
from queen_league.database.models import Setting, AuditLog

logger = logging.getLogger(__name__)

class SettingsService(BaseService):
    """Manages league settings with simple caching and audit trail."""
    
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self._cache: Dict[str, str] = {}
    
    async def load_all(self):
        """Load all settings from the database into memory."""
        async with self.get_session() as session:
            result = await session.execute(select(Setting))
            self._cache = {setting.key: setting.value for setting in result.scalars().all()}
        logger.info(f"Loaded {len(self._cache)} settings")
    
    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._cache.get(key, default)
    
    def list_all(self) -> Dict[str, str]:
        return self._cache.copy()
    
    def get_multiplier_settings(self) -> Dict[str, str]:
        """Return the multiplier_rank_* subset of the cached settings."""
        return {
            key: value for key, value in self._cache.items()
            if key.startswith(Config.MULTIPLIER_KEY_PREFIX)
        }
    
    def get_current_episode(self) -> int:
        """Current active episode; falls back to the default when unset or unparsable."""
        raw = self._cache.get(Config.CURRENT_EPISODE_KEY)
        try:
            episode = int(str(raw).strip())
        except (TypeError, ValueError):
            if raw is not None:
                logger.warning(f"Invalid current_episode setting {raw!r}, using {Config.DEFAULT_EPISODE}")
            return Config.DEFAULT_EPISODE
        return episode if episode >= 1 else Config.DEFAULT_EPISODE
    
    async def set(self, key: str, value, user_id: Optional[int] = None):
        """
        Set a setting and persist it with an audit entry.
        
        Args:
            key: Setting key
            value: New value (stored as a string)
            user_id: Operator id for audit trail
        """
        value = str(value)
        async with self.get_session() as session:
            setting = await session.get(Setting, key)
            old_value = setting.value if setting else None
            if setting:
                setting.value = value
            else:
                session.add(Setting(key=key, value=value))
            
            session.add(AuditLog(
                user_id=user_id,
                action='setting_set',
                details=json.dumps({'key': key, 'old_value': old_value, 'new_value': value})
            ))
        
        # Reload after the write commits so the cache matches the database
        await self.load_all()
    
    async def set_batch(self, updates: Mapping[str, object], user_id: Optional[int] = None) -> int:
        """
        Set several settings at once (e.g. all four multipliers). Empty values are skipped.
        
        Returns:
            Number of settings written
        """
        written = 0
        async with self.get_session() as session:
            for key, value in updates.items():
                if value is None or str(value).strip() == '':
                    continue
                value = str(value)
                setting = await session.get(Setting, key)
                old_value = setting.value if setting else None
                if setting:
                    setting.value = value
                else:
                    session.add(Setting(key=key, value=value))
                session.add(AuditLog(
                    user_id=user_id,
                    action='setting_set',
                    details=json.dumps({'key': key, 'old_value': old_value, 'new_value': value})
                ))
                written += 1
        
        await self.load_all()
        return written
    
    async def set_current_episode(self, episode_number: int, user_id: Optional[int] = None):
        if episode_number < 1:
            raise ValueError("episode_number must be a positive integer")
        await self.set(Config.CURRENT_EPISODE_KEY, episode_number, user_id)
