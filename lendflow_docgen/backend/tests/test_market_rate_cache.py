# backend/tests/test_market_rate_cache.py
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import httpx
import pytest

from docgen.clients.fred import FredClient, FredObservation
from docgen.services.market_rates import MarketRateCache


class StubFred(FredClient):
    def __init__(self, values: dict[str, float | None]):
        super().__init__(api_key="test-key")
        self.values = values
        self.calls: list[str] = []

    def latest(self, series_id: str) -> FredObservation:
        self.calls.append(series_id)
        v = self.values.get(series_id)
        return FredObservation(series_id, v, "2026-10-16" if v is not None else None, {})


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 18, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now


LIVE = {"DPRIME": 0.075, "SOFR": 0.0431, "DGS10": 0.0402}


def test_without_api_key_fallback_rates_are_cached():
    cache = MarketRateCache(FredClient(api_key=""))
    rates = cache.get()
    assert rates.source == "fallback"
    assert rates.apor_estimate == 0.059
    assert cache.is_fresh()


def test_live_rates_and_apor_estimate():
    fred = StubFred(LIVE)
    rates = MarketRateCache(fred, clock=Clock()).get()

    assert rates.source == "fred"
    assert rates.prime == 0.075
    assert rates.apor_estimate == pytest.approx(0.0402 + 0.0175)
    assert fred.calls == ["DPRIME", "SOFR", "DGS10"]


def test_cache_serves_until_ttl_then_refetches():
    fred = StubFred(LIVE)
    clock = Clock()
    cache = MarketRateCache(fred, ttl_seconds=3600, clock=clock)

    first = cache.get()
    clock.now += timedelta(minutes=59)
    assert cache.get() is first
    assert len(fred.calls) == 3

    clock.now += timedelta(minutes=2)
    assert not cache.is_fresh()
    second = cache.get()
    assert second is not first
    assert second.fetched_at == clock.now
    assert len(fred.calls) == 6


def test_refresh_and_invalidate_are_explicit():
    fred = StubFred(LIVE)
    cache = MarketRateCache(fred, clock=Clock())
    cache.get()
    cache.refresh()
    assert len(fred.calls) == 6

    cache.invalidate()
    assert not cache.is_fresh()
    cache.get()
    assert len(fred.calls) == 9


def test_missing_series_falls_back():
    rates = MarketRateCache(StubFred({**LIVE, "SOFR": None}), clock=Clock()).get()
    assert rates.source == "fallback"


def test_fred_client_reads_newest_real_observation(monkeypatch):
    payload = {"observations": [{"date": "2026-10-17", "value": "."}, {"date": "2026-10-16", "value": "4.02"}]}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["series_id"] == "DGS10"
        return httpx.Response(200, json=payload)

    transport = httpx.MockTransport(handler)
    real_client = httpx.Client

    def patched(*args, **kwargs):
        kwargs["transport"] = transport
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "Client", patched)
    obs = FredClient(api_key="k").latest("DGS10")
    assert obs.value == pytest.approx(0.0402)
    assert obs.date == "2026-10-16"


def test_fred_client_http_error_is_captured(monkeypatch):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={}))
    real_client = httpx.Client
    monkeypatch.setattr(httpx, "Client", lambda *a, **kw: real_client(*a, transport=transport, **kw))

    obs = FredClient(api_key="k").latest("SOFR")
    assert obs.value is None
    assert "error" in obs.raw


class SlowFred(StubFred):
    def latest(self, series_id: str) -> FredObservation:
        time.sleep(0.05)
        return super().latest(series_id)


def test_concurrent_callers_on_stale_cache_fetch_once():
    fred = SlowFred(LIVE)
    clock = Clock()
    cache = MarketRateCache(fred, ttl_seconds=3600, clock=clock)
    cache.get()
    clock.now += timedelta(hours=2)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: cache.get(), range(8)))

    assert len(fred.calls) == 6  # initial fill + one refresh, three series each
    assert all(r is results[0] for r in results)
    assert results[0].fetched_at == clock.now
