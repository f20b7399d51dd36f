"""
Advisory locks for score recalculation.

Backed by Redis (SET NX EX with token-checked release) when a client is
available, otherwise by an in-process registry. Only one holder per lock
name at a time. A held Redis lock has its expiry extended periodically, so a
run longer than the TTL keeps it; a crashed holder's lock still expires.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional, Set

from redis.exceptions import RedisError

from queen_league.config import Config
from queen_league.utils.logger import setup_logger
from queen_league.utils.redis_utils import RedisUtils
from queen_league.utils.scoring_exceptions import ConcurrencyError

logger = setup_logger(__name__)

# Delete the key only if we still own it
RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

# Push the expiry out only if we still own the lock
EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('expire', KEYS[1], ARGV[2])
else
    return 0
end
"""

REBUILD_LOCK_NAME = "standings_rebuild"


def episode_lock_name(episode_number: int) -> str:
    return f"episode:{episode_number}"


class EpisodeLockManager:
    """Non-blocking per-episode locks and a blocking global rebuild lock."""
    
    def __init__(self, redis_client=None, ttl_seconds: Optional[int] = None, key_prefix: str = "recalc_lock",
                 renew_interval: Optional[float] = None):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds or Config.RECALC_LOCK_TTL_SECONDS
        # Held Redis locks are re-armed every renew_interval seconds
        self.renew_interval = renew_interval or self.ttl_seconds / 3
        self.key_prefix = key_prefix
        self._held: Set[str] = set()
    
    @classmethod
    async def create(cls) -> 'EpisodeLockManager':
        """Build a lock manager, using Redis when one is configured and reachable."""
        redis_client = await RedisUtils.create_redis_client()
        if redis_client is None:
            logger.info("Using in-process recalculation locks")
        return cls(redis_client=redis_client)
    
    @property
    def distributed(self) -> bool:
        return self.redis_client is not None
    
    def _key(self, name: str) -> str:
        return f"{self.key_prefix}:{name}"
    
    async def try_acquire(self, name: str) -> Optional[str]:
        """Acquire a lock without waiting. Returns the owner token, or None if held elsewhere."""
        token = uuid.uuid4().hex
        if self.redis_client is not None:
            acquired = await self.redis_client.set(self._key(name), token, ex=self.ttl_seconds, nx=True)
            return token if acquired else None
        
        if name in self._held:
            return None
        self._held.add(name)
        return token
    
    async def release(self, name: str, token: str):
        if self.redis_client is not None:
            released = await self.redis_client.eval(RELEASE_SCRIPT, 1, self._key(name), token)
            if not released:
                logger.warning(f"Lock '{name}' expired before release")
            return
        self._held.discard(name)
    
    @asynccontextmanager
    async def hold(self, name: str):
        """
        Hold a lock for the duration of the block.
        
        Raises:
            ConcurrencyError: If the lock is already held
        """
        token = await self.try_acquire(name)
        if token is None:
            raise ConcurrencyError(name)
        async with self._holding(name, token):
            yield token
    
    @asynccontextmanager
    async def wait_for(self, name: str, timeout: Optional[float] = None):
        """
        Wait up to `timeout` seconds for a lock, then hold it for the block.
        
        Raises:
            ConcurrencyError: If the lock could not be acquired in time
        """
        timeout = Config.REBUILD_LOCK_WAIT_SECONDS if timeout is None else timeout
        deadline = time.monotonic() + timeout
        delay = 0.01
        token = await self.try_acquire(name)
        while token is None:
            if time.monotonic() >= deadline:
                raise ConcurrencyError(name)
            await asyncio.sleep(delay)
            delay = min(delay * 2, 0.5)
            token = await self.try_acquire(name)
        async with self._holding(name, token):
            yield token
    
    @asynccontextmanager
    async def _holding(self, name: str, token: str):
        renewal = None
        if self.redis_client is not None:
            renewal = asyncio.create_task(self._keep_alive(name, token))
        try:
            yield
        finally:
            if renewal is not None:
                renewal.cancel()
                try:
                    await renewal
                except asyncio.CancelledError:
                    pass
            await self.release(name, token)
    
    async def _keep_alive(self, name: str, token: str):
        """Extend a Redis lock's expiry every renew_interval until cancelled or lost."""
        while True:
            await asyncio.sleep(self.renew_interval)
            try:
                extended = await self.redis_client.eval(
                    EXTEND_SCRIPT, 1, self._key(name), token, self.ttl_seconds
                )
            except (RedisError, OSError) as e:
                logger.warning(f"Failed to renew lock '{name}': {e}")
                continue
            if not extended:
                logger.warning(f"Lock '{name}' was lost before renewal")
                return
    
    async def is_locked(self, name: str) -> bool:
        if self.redis_client is not None:
            return bool(await self.redis_client.exists(self._key(name)))
        return name in self._held
    
    async def close(self):
        """Clean up Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
