"""Exchange rate fetching and caching"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from .models import RateSnapshot
from .settings import settings
from .storage import KeyValueStore


logger = logging.getLogger(__name__)

CACHE_KEY = "exchange_rates_cache"
CACHE_TTL = timedelta(hours=24)

RatesFetcher = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def fetch_rates(
    base: str,
    client: Optional[httpx.AsyncClient] = None,
    url_template: Optional[str] = None,
) -> Dict[str, Any]:
    """Fetch the latest rates for ``base`` from the currency API.

    The API keys its payload by the lowercase base code:
    ``{"date": "2024-01-15", "usd": {"eur": 0.91, ...}}``.
    Returns ``{"date": str, "rates": {code: multiplier}}`` with codes as
    the provider sent them. Raises on network errors and malformed bodies.
    """
    base_lower = base.lower()
    url = (url_template or settings.rates_url).format(base=base_lower)

    if client is None:
        async with httpx.AsyncClient(timeout=10.0) as own_client:
            response = await own_client.get(url)
    else:
        response = await client.get(url)
    response.raise_for_status()

    data = response.json()
    rates = data.get(base_lower) if isinstance(data, dict) else None
    if not isinstance(rates, dict):
        raise ValueError(f"No rates for {base} in provider response")

    return {"date": str(data.get("date", "")), "rates": rates}


def _normalize_rates(raw: Dict[str, Any]) -> Dict[str, float]:
    rates: Dict[str, float] = {}
    for code, value in raw.items():
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            rates[str(code).upper()] = float(value)
    return rates


class RateCache:
    """Per-base-currency rate snapshots with a time-to-live.

    A fresh snapshot is served without touching the network. Once it is
    older than the TTL a refetch is attempted; if that fails the stale
    snapshot is returned instead, or None if nothing was ever cached.
    """

    def __init__(
        self,
        store: KeyValueStore,
        fetcher: Optional[RatesFetcher] = None,
        ttl: timedelta = CACHE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.fetcher = fetcher or fetch_rates
        self.ttl = ttl
        self.clock = clock

    def _key(self, base: str) -> str:
        return f"{CACHE_KEY}_{base}"

    def cached(self, base: str) -> Optional[RateSnapshot]:
        try:
            raw = self.store.get(self._key(base.upper()))
            return RateSnapshot.model_validate(raw) if raw else None
        except (ValueError, ValidationError, OSError) as e:
            logger.warning("Ignoring unreadable rate cache for %s: %s", base, e)
            return None

    def is_fresh(self, snapshot: RateSnapshot) -> bool:
        return self.clock() - snapshot.fetchedAt < self.ttl

    async def get_rates(self, base_currency: str) -> Optional[RateSnapshot]:
        base = base_currency.strip().upper()
        cached = self.cached(base)
        if cached and self.is_fresh(cached):
            return cached

        try:
            fetched = await self.fetcher(base)
            if not fetched:
                raise ValueError("empty rate response")
            snapshot = RateSnapshot(
                base=base,
                asOfDate=str(fetched.get("date") or ""),
                rates=_normalize_rates(fetched.get("rates") or {}),
                fetchedAt=self.clock(),
            )
        except Exception as e:
            if cached:
                logger.warning("Rate fetch for %s failed, using stale rates from %s: %s", base, cached.asOfDate, e)
            else:
                logger.warning("Rate fetch for %s failed and no cached rates exist: %s", base, e)
            return cached

        try:
            self.store.set(self._key(base), snapshot.model_dump(mode="json"))
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to cache rates for %s: %s", base, e)
        logger.info("Fetched %d rates for %s (as of %s)", len(snapshot.rates), base, snapshot.asOfDate)
        return snapshot
