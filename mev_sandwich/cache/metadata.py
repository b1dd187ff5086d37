"""Short-TTL caches for token, pool and gas metadata"""

import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

import structlog
from cachetools import TTLCache

from mev_sandwich.models import Chain, PoolSnapshot, TokenInfo
from mev_sandwich.monitoring import metrics

logger = structlog.get_logger()


class MetadataCache:
    """
    Read-mostly cache in front of the chain client.

    Features:
    - Token metadata with 10-minute TTL (default)
    - Pool snapshots with 5-minute TTL (default)
    - Gas prices with 30-second TTL (default)
    - Hit/miss statistics per cache

    Stale reads are acceptable; a loader failure is never cached.
    """

    def __init__(
        self,
        token_ttl: float = 600.0,
        pool_ttl: float = 300.0,
        gas_ttl: float = 30.0,
        maxsize: int = 10000,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize metadata cache.

        Args:
            token_ttl: Token metadata time-to-live in seconds
            pool_ttl: Pool snapshot time-to-live in seconds
            gas_ttl: Gas price time-to-live in seconds
            maxsize: Maximum entries per cache
            timer: Monotonic clock (injectable for tests)
        """
        self._caches: Dict[str, TTLCache] = {
            "token": TTLCache(maxsize=maxsize, ttl=token_ttl, timer=timer),
            "pool": TTLCache(maxsize=maxsize, ttl=pool_ttl, timer=timer),
            "gas": TTLCache(maxsize=maxsize, ttl=gas_ttl, timer=timer),
        }
        self._hits: Dict[str, int] = {name: 0 for name in self._caches}
        self._misses: Dict[str, int] = {name: 0 for name in self._caches}
        self._logger = logger.bind(component="metadata_cache")

    async def _get_or_load(
        self,
        cache_name: str,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        cache = self._caches[cache_name]
        value = cache.get(key)
        if value is not None:
            self._hits[cache_name] += 1
            metrics.admission_cache_hits.labels(cache=cache_name, result="hit").inc()
            return value

        self._misses[cache_name] += 1
        metrics.admission_cache_hits.labels(cache=cache_name, result="miss").inc()
        value = await loader()
        if value is not None:
            cache[key] = value
        return value

    async def get_token(
        self,
        chain: Chain,
        address: str,
        loader: Callable[[], Awaitable[Optional[TokenInfo]]],
    ) -> Optional[TokenInfo]:
        """Get token metadata, loading it on a miss"""
        return await self._get_or_load("token", (chain.value, address.lower()), loader)

    async def get_pool(
        self,
        chain: Chain,
        token_a: str,
        token_b: str,
        dex: str,
        loader: Callable[[], Awaitable[Optional[PoolSnapshot]]],
    ) -> Optional[PoolSnapshot]:
        """Get a pool snapshot for an unordered token pair on one DEX"""
        pair = tuple(sorted((token_a.lower(), token_b.lower())))
        return await self._get_or_load("pool", (chain.value, dex, pair), loader)

    async def get_gas_price(
        self,
        chain: Chain,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Get the chain's current gas price"""
        return await self._get_or_load("gas", chain.value, loader)

    def invalidate(self, cache_name: Optional[str] = None) -> None:
        """Drop cached entries of one cache, or of all caches"""
        names = [cache_name] if cache_name else list(self._caches)
        for name in names:
            self._caches[name].clear()
        self._logger.debug("metadata_cache_invalidated", caches=names)

    def stats(self) -> Dict[str, Dict[str, float]]:
        """Get size and hit rate per cache"""
        result = {}
        for name, cache in self._caches.items():
            total = self._hits[name] + self._misses[name]
            result[name] = {
                "size": len(cache),
                "hits": self._hits[name],
                "misses": self._misses[name],
                "hit_rate": self._hits[name] / total if total else 0.0,
            }
        return result
