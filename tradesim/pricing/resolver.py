import asyncio
import math
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional

from loguru import logger

from ..core.errors import PriceSourceError, PriceUnavailableError
from .price_cache import PriceCache
from .price_source import PriceSource

DEFAULT_PRICES: Dict[str, float] = {
    "BTC/USDT": 43250.0,
    "ETH/USDT": 2650.0,
    "ADA/USDT": 0.485,
    "SOL/USDT": 98.75,
    "BNB/USDT": 315.20,
}


def to_symbol(pair: str) -> str:
    return pair.replace("/", "")


class PriceResolver:
    """Price lookup used on the settlement and valuation paths.

    Order of preference: fresh cache, upstream ticker (rate limited per symbol),
    stale cache, static default table. Only raises PriceUnavailableError when
    all of those come up empty, which cannot happen while ``fallback_price`` is set.
    """

    def __init__(
        self,
        cache: PriceCache,
        source: PriceSource,
        default_prices: Optional[Dict[str, float]] = None,
        fallback_price: Optional[float] = 100.0,
        min_interval_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cache = cache
        self.source = source
        self.default_prices = dict(DEFAULT_PRICES if default_prices is None else default_prices)
        self.fallback_price = fallback_price
        self.min_interval_sec = min_interval_ms / 1000.0
        self.clock = clock
        self.sleep = sleep
        self._last_call: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get_current_price(self, pair: str) -> float:
        symbol = to_symbol(pair)
        cached = self.cache.get_price(symbol)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(symbol, asyncio.Lock())
        async with lock:
            # another coroutine may have fetched while we waited
            cached = self.cache.get_price(symbol)
            if cached is not None:
                return cached
            try:
                price = await self._fetch(symbol)
            except Exception as e:
                return self._fallback(pair, symbol, e)
            self.cache.set_price(symbol, price)
            return price

    async def get_prices(self, pairs: Iterable[str]) -> Dict[str, float]:
        prices = {}
        for pair in pairs:
            if pair not in prices:
                prices[pair] = await self.get_current_price(pair)
        return prices

    async def _fetch(self, symbol: str) -> float:
        last = self._last_call.get(symbol)
        if last is not None:
            wait = self.min_interval_sec - (self.clock() - last)
            if wait > 0:
                await self.sleep(wait)
        self._last_call[symbol] = self.clock()
        ticker = await self.source.fetch_ticker(symbol)
        price = float(ticker.last_price)
        if not math.isfinite(price) or price <= 0:
            raise PriceSourceError(f"Ticker {symbol} returned unusable price {price}")
        return price

    def _fallback(self, pair: str, symbol: str, cause: Exception) -> float:
        stale = self.cache.get_stale_price(symbol)
        if stale is not None:
            logger.warning(f"Price fetch for {symbol} failed ({cause}); using stale cached {stale}")
            return stale
        price = self.default_prices.get(pair, self.fallback_price)
        if price is None:
            raise PriceUnavailableError(pair, cause)
        logger.warning(f"Price fetch for {symbol} failed ({cause}); using default {price}")
        self.cache.set_price(symbol, price)
        return price
