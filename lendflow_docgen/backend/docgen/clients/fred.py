from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..config import settings


@dataclass(frozen=True)
class FredObservation:
    series_id: str
    value: Optional[float]  # decimal, 0.0675 == 6.75%
    date: Optional[str]
    raw: dict[str, Any]


class FredClient:
    """
    Minimal FRED series/observations client.
    FRED reports rates in percent; values are converted to decimals here.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 10.0) -> None:
        self.base = (base_url or settings.fred_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.fred_api_key
        self.timeout = timeout

    def enabled(self) -> bool:
        return bool(self.api_key)

    def latest(self, series_id: str) -> FredObservation:
        if not self.api_key:
            return FredObservation(series_id, None, None, {"error": "fred_api_key not set"})

        params = {
            "series_id": series_id,
            "api_key": self.api_key,
            "file_type": "json",
            "sort_order": "desc",
            "limit": 5,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.get(f"{self.base}/series/observations", params=params)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            return FredObservation(series_id, None, None, {"error": str(e)})

        # FRED uses "." for missing days (holidays); take the newest real value
        for obs in data.get("observations") or []:
            v = obs.get("value")
            try:
                pct = float(v)
            except (TypeError, ValueError):
                continue
            return FredObservation(series_id, pct / 100.0, obs.get("date"), data)

        return FredObservation(series_id, None, None, data)
