# backend/docgen/services/market_rates.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..clients.fred import FredClient
from ..config import settings

log = logging.getLogger(__name__)

PRIME_SERIES = "DPRIME"
SOFR_SERIES = "SOFR"
TREASURY_10Y_SERIES = "DGS10"


@dataclass(frozen=True)
class MarketRates:
    prime: float
    sofr: float
    treasury_10y: float
    apor_estimate: float
    source: str  # fred|fallback
    fetched_at: datetime


def fallback_rates(now: datetime) -> MarketRates:
    return MarketRates(
        prime=0.0675,
        sofr=0.0430,
        treasury_10y=0.0415,
        apor_estimate=0.059,
        source="fallback",
        fetched_at=now,
    )


class MarketRateCache:
    """
    Explicitly owned market-rate snapshot with a TTL.

    get() returns the cached snapshot while it is fresh and refreshes
    otherwise; refresh() always fetches. Without a FRED key, or when any
    series fails, the static fallback rates are cached instead so a dead
    upstream is not hammered on every document.
    """

    def __init__(
        self,
        client: Optional[FredClient] = None,
        *,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.client = client or FredClient()
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.market_rate_ttl_seconds)
        self.clock = clock
        self._rates: Optional[MarketRates] = None
        self._lock = threading.Lock()
        # one upstream fetch at a time; waiters reuse its result
        self._refresh_lock = threading.Lock()

    def is_fresh(self) -> bool:
        return self._fresh_rates() is not None

    def _fresh_rates(self) -> Optional[MarketRates]:
        with self._lock:
            if self._rates is not None and (self.clock() - self._rates.fetched_at) < self.ttl:
                return self._rates
        return None

    def get(self) -> MarketRates:
        rates = self._fresh_rates()
        if rates is not None:
            return rates
        with self._refresh_lock:
            # another caller may have refreshed while this one waited
            rates = self._fresh_rates()
            if rates is not None:
                return rates
            return self._store(self._fetch(self.clock()))

    def refresh(self) -> MarketRates:
        with self._refresh_lock:
            return self._store(self._fetch(self.clock()))

    def _store(self, rates: MarketRates) -> MarketRates:
        with self._lock:
            self._rates = rates
        return rates

    def invalidate(self) -> None:
        with self._lock:
            self._rates = None

    def _fetch(self, now: datetime) -> MarketRates:
        if not self.client.enabled():
            return fallback_rates(now)

        prime = self.client.latest(PRIME_SERIES)
        sofr = self.client.latest(SOFR_SERIES)
        treasury = self.client.latest(TREASURY_10Y_SERIES)

        if prime.value is None or sofr.value is None or treasury.value is None:
            log.warning(
                "fred_fetch_incomplete",
                extra={"prime": prime.value, "sofr": sofr.value, "treasury_10y": treasury.value},
            )
            return fallback_rates(now)

        return MarketRates(
            prime=prime.value,
            sofr=sofr.value,
            treasury_10y=treasury.value,
            apor_estimate=round(treasury.value + settings.apor_spread_over_treasury, 6),
            source="fred",
            fetched_at=now,
        )
