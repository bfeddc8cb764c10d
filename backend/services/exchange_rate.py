"""
Currency Rate Provider

Fetches the current primary -> secondary exchange rate from the upstream
rates API and caches it per provider instance:

- within ``ttl`` the cached rate is served without an upstream call
- when upstream fails, a cached rate younger than ``stale_tolerance`` is
  served instead
- otherwise RateUnavailable is raised; no default rate is ever invented

The clock is injected so cache expiry can be tested deterministically.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import httpx

from ingestion.errors import RateUnavailable

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CachedRate:
    rate: float
    fetched_at: datetime


@dataclass
class RateInfo:
    """A rate together with where it came from."""
    base: str
    quote: str
    rate: float
    fetched_at: datetime
    cached: bool = False
    stale: bool = False

    def to_dict(self) -> Dict:
        return {
            "base": self.base,
            "quote": self.quote,
            "rate": self.rate,
            "fetched_at": self.fetched_at.isoformat(),
            "cached": self.cached,
            "stale": self.stale,
        }


class RateCache:
    """Last successfully fetched rate per currency pair."""

    def __init__(self, ttl: timedelta, stale_tolerance: timedelta, clock: Clock = utc_now):
        if stale_tolerance < ttl:
            raise ValueError("stale_tolerance must not be shorter than ttl")
        self.ttl = ttl
        self.stale_tolerance = stale_tolerance
        self.clock = clock
        self._entries: Dict[Tuple[str, str], CachedRate] = {}

    def _age(self, entry: CachedRate) -> timedelta:
        return self.clock() - entry.fetched_at

    def get_fresh(self, base: str, quote: str) -> Optional[CachedRate]:
        entry = self._entries.get((base, quote))
        if entry and self._age(entry) < self.ttl:
            return entry
        return None

    def get_stale(self, base: str, quote: str) -> Optional[CachedRate]:
        """Cached rate that is past its TTL but still inside the stale tolerance."""
        entry = self._entries.get((base, quote))
        if entry and self._age(entry) < self.stale_tolerance:
            return entry
        return None

    def put(self, base: str, quote: str, rate: float) -> CachedRate:
        entry = CachedRate(rate=rate, fetched_at=self.clock())
        self._entries[(base, quote)] = entry
        return entry

    def clear(self):
        self._entries.clear()


class CurrencyRateProvider:
    """
    Current exchange rate between the primary and secondary currency.

    Usage:
        provider = CurrencyRateProvider(api_url, cache)
        rate = await provider.get_current_rate("USD", "EGP")
    """

    def __init__(
        self,
        api_url: str,
        cache: RateCache,
        timeout: float = 5.0,
        default_base: str = "USD",
        default_quote: str = "EGP",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.cache = cache
        self.timeout = timeout
        self.default_base = default_base
        self.default_quote = default_quote
        self.transport = transport
        self._lock = asyncio.Lock()

    async def get_current_rate(
        self,
        base: Optional[str] = None,
        quote: Optional[str] = None,
        override: Optional[float] = None,
    ) -> float:
        """
        Positive rate for base -> quote.

        A positive ``override`` bypasses the cache and upstream entirely.

        Raises:
            RateUnavailable
        """
        if override is not None and override > 0:
            return float(override)
        info = await self.get_rate_info(base, quote)
        return info.rate

    async def get_rate_info(self, base: Optional[str] = None, quote: Optional[str] = None) -> RateInfo:
        base = (base or self.default_base).upper()
        quote = (quote or self.default_quote).upper()

        entry = self.cache.get_fresh(base, quote)
        if entry:
            return RateInfo(base, quote, entry.rate, entry.fetched_at, cached=True)

        async with self._lock:
            # Another caller may have refreshed while we waited
            entry = self.cache.get_fresh(base, quote)
            if entry:
                return RateInfo(base, quote, entry.rate, entry.fetched_at, cached=True)

            try:
                rate = await self._fetch_rate(base, quote)
            except RateUnavailable as e:
                stale = self.cache.get_stale(base, quote)
                if stale is None:
                    logger.error(f"Exchange rate unavailable: {e.message}")
                    raise
                logger.warning(
                    f"Serving stale {base}->{quote} rate {stale.rate} after upstream failure",
                    extra={"fetched_at": stale.fetched_at.isoformat(), "reason": e.message}
                )
                return RateInfo(base, quote, stale.rate, stale.fetched_at, cached=True, stale=True)

            entry = self.cache.put(base, quote, rate)
            logger.info(f"Fetched {base}->{quote} rate {rate}")
            return RateInfo(base, quote, entry.rate, entry.fetched_at)

    async def _fetch_rate(self, base: str, quote: str) -> float:
        url = f"{self.api_url}/{base}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            raise RateUnavailable(base, quote, "upstream timed out")
        except httpx.HTTPError as e:
            raise RateUnavailable(base, quote, f"upstream request failed: {str(e)[:100]}")

        if response.status_code != 200:
            raise RateUnavailable(base, quote, f"HTTP {response.status_code}")

        try:
            rate = float(response.json()["rates"][quote])
        except (ValueError, KeyError, TypeError):
            raise RateUnavailable(base, quote, "malformed upstream response")

        if rate <= 0:
            raise RateUnavailable(base, quote, f"non-positive rate {rate}")
        return rate


def build_rate_provider(settings) -> CurrencyRateProvider:
    """Provider wired from application settings."""
    cache = RateCache(
        ttl=timedelta(minutes=settings.EXCHANGE_RATE_CACHE_MINUTES),
        stale_tolerance=timedelta(hours=settings.EXCHANGE_RATE_STALE_TOLERANCE_HOURS),
    )
    return CurrencyRateProvider(
        api_url=settings.EXCHANGE_RATE_API_URL,
        cache=cache,
        timeout=settings.EXCHANGE_RATE_TIMEOUT_SECONDS,
        default_base=settings.PRIMARY_CURRENCY,
        default_quote=settings.SECONDARY_CURRENCY,
    )
