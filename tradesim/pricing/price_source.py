"""
Ticker sources consumed by the price resolver.

• BinanceTickerSource polls the public 24hr ticker endpoint (no keys needed).
• StaticPriceSource serves a fixed table, for offline runs and tests.
• Sources raise PriceSourceError on any failure; the resolver decides what to fall back to.
"""

from __future__ import annotations

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from loguru import logger

from ..core.errors import PriceSourceError

DEFAULT_TICKER_URL = "https://api.binance.com/api/v3/ticker/24hr"


def _to_float(v: Any) -> Optional[float]:
    try:
        if v is None:
            return None
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class Ticker:
    symbol: str
    last_price: float
    bid_price: Optional[float] = None
    ask_price: Optional[float] = None
    price_change_percent: Optional[float] = None
    volume: Optional[float] = None


class PriceSource(ABC):
    @abstractmethod
    async def fetch_ticker(self, symbol: str) -> Ticker:
        """Return the latest ticker for a flat symbol such as BTCUSDT."""
        raise NotImplementedError


class BinanceTickerSource(PriceSource):
    def __init__(
        self,
        rest_ticker: Optional[str] = None,
        timeout: float = 5.0,
        max_retries: int = 2,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.rest_ticker = rest_ticker or DEFAULT_TICKER_URL
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.session = session or requests.Session()
        self.default_headers = {"Accept": "application/json"}

    async def fetch_ticker(self, symbol: str) -> Ticker:
        # requests is blocking; keep the event loop free
        return await asyncio.to_thread(self._fetch_sync, symbol)

    def _fetch_sync(self, symbol: str) -> Ticker:
        attempt = 0
        last_error = "no attempt made"
        while attempt <= self.max_retries:
            try:
                resp = self.session.get(
                    self.rest_ticker,
                    params={"symbol": symbol},
                    headers=self.default_headers,
                    timeout=self.timeout,
                )
                if resp.status_code == 200:
                    return self._parse(symbol, resp.json())
                if resp.status_code not in (429, 503, 504):
                    raise PriceSourceError(f"Ticker {symbol} failed with HTTP {resp.status_code}: {resp.text[:200]}")
                last_error = f"HTTP {resp.status_code}"
            except requests.RequestException as exc:
                last_error = str(exc)
            if attempt == self.max_retries:
                break
            wait = self.backoff * (2 ** attempt)
            logger.warning(f"Ticker {symbol} failed ({last_error}), retry in {wait:.2f}s")
            time.sleep(wait)
            attempt += 1
        raise PriceSourceError(f"Ticker {symbol} failed after {self.max_retries} retries: {last_error}")

    @staticmethod
    def _parse(symbol: str, data: Any) -> Ticker:
        if not isinstance(data, dict):
            raise PriceSourceError(f"Unexpected ticker payload for {symbol}")
        last = _to_float(data.get("lastPrice"))
        if last is None or not math.isfinite(last) or last <= 0:
            raise PriceSourceError(f"Ticker {symbol} has no usable lastPrice: {data.get('lastPrice')!r}")
        return Ticker(
            symbol=data.get("symbol") or symbol,
            last_price=last,
            bid_price=_to_float(data.get("bidPrice")),
            ask_price=_to_float(data.get("askPrice")),
            price_change_percent=_to_float(data.get("priceChangePercent")),
            volume=_to_float(data.get("volume")),
        )


class StaticPriceSource(PriceSource):
    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices: Dict[str, float] = dict(prices or {})
        self.calls = 0

    def set_price(self, symbol: str, price: float):
        self.prices[symbol] = price

    async def fetch_ticker(self, symbol: str) -> Ticker:
        self.calls += 1
        price = self.prices.get(symbol)
        if price is None:
            raise PriceSourceError(f"No static price for {symbol}")
        return Ticker(symbol=symbol, last_price=float(price))
