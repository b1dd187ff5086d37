"""Price lookups wrapped in a circuit breaker, retry policy and short-lived cache"""

import time
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

import structlog
from cachetools import TTLCache

from mev_sandwich.errors import CircuitOpenError, PriceDataError
from mev_sandwich.interfaces import PriceSource
from mev_sandwich.models import Chain, PriceQuote
from mev_sandwich.monitoring import metrics
from mev_sandwich.resilience import CircuitBreaker, RetryPolicy, retry_async

logger = structlog.get_logger()


class GuardedPriceSource:
    """
    Consumes an external price oracle on behalf of the pipeline.

    Quotes are cached per (chain, token) for ``cache_seconds``. Every lookup that
    reaches the oracle goes through the breaker, so a run of failures opens it
    and later lookups fail fast with CircuitOpenError.
    """

    def __init__(
        self,
        source: PriceSource,
        breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        cache_seconds: float = 30.0,
        cache_size: int = 5000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.breaker = breaker or CircuitBreaker(name="price_oracle")
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1)
        self._cache: Optional[TTLCache] = (
            TTLCache(maxsize=cache_size, ttl=cache_seconds, timer=timer)
            if cache_seconds > 0
            else None
        )
        self._hits = 0
        self._misses = 0
        self._logger = logger.bind(component="price_source")

    async def _fetch(self, token_address: str, chain: Chain) -> PriceQuote:
        quote = await self.source.get_price(token_address, chain)
        if quote is None or quote.price is None or quote.price <= Decimal("0"):
            raise PriceDataError(
                f"no usable price for {token_address}", chain=chain.value
            )
        if not 0.0 <= quote.confidence <= 1.0:
            raise PriceDataError(
                f"confidence {quote.confidence} out of range for {token_address}",
                chain=chain.value,
            )
        return quote

    async def get_price(self, token_address: str, chain: Chain) -> PriceQuote:
        """
        Get a token price.

        Raises:
            PriceDataError: if the oracle fails or returns unusable data
            CircuitOpenError: if the oracle's circuit is open
        """
        key: Tuple[str, str] = (chain.value, token_address.lower())
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                self._hits += 1
                return cached
        self._misses += 1

        try:
            quote = await retry_async(
                self.retry_policy,
                self._fetch,
                token_address,
                chain,
                operation="price_lookup",
                breaker=self.breaker,
            )
        except CircuitOpenError:
            metrics.price_lookups.labels(chain=chain.value, outcome="circuit_open").inc()
            self._logger.warning("price_lookup_circuit_open", chain=chain.value, token=token_address)
            raise
        except PriceDataError:
            metrics.price_lookups.labels(chain=chain.value, outcome="error").inc()
            raise
        except Exception as e:
            metrics.price_lookups.labels(chain=chain.value, outcome="error").inc()
            self._logger.warning(
                "price_lookup_failed",
                chain=chain.value,
                token=token_address,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PriceDataError(
                f"price lookup failed for {token_address}: {e}", chain=chain.value, cause=e
            ) from e

        metrics.price_lookups.labels(chain=chain.value, outcome="ok").inc()
        if self._cache is not None:
            self._cache[key] = quote
        return quote

    def cache_stats(self) -> Dict[str, float]:
        total = self._hits + self._misses
        return {
            "size": len(self._cache) if self._cache is not None else 0,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }
