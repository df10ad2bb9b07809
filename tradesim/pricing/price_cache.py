from dataclasses import dataclass
from typing import Callable, Dict, Optional
import time


@dataclass
class PriceCacheEntry:
    price: float
    timestamp: float


class PriceCache:
    """Last known price per flat symbol (BTCUSDT), fresh for ``ttl_sec``."""

    def __init__(self, ttl_sec: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = ttl_sec
        self.clock = clock
        self._entries: Dict[str, PriceCacheEntry] = {}

    def _is_fresh(self, entry: PriceCacheEntry) -> bool:
        return self.clock() - entry.timestamp < self.ttl_sec

    def get_price(self, symbol: str) -> Optional[float]:
        entry = self._entries.get(symbol)
        if entry is not None and self._is_fresh(entry):
            return entry.price
        return None

    def get_stale_price(self, symbol: str) -> Optional[float]:
        """Any cached price regardless of age."""
        entry = self._entries.get(symbol)
        return entry.price if entry is not None else None

    def set_price(self, symbol: str, price: float):
        self._entries[symbol] = PriceCacheEntry(price=price, timestamp=self.clock())

    def get_all_prices(self) -> Dict[str, float]:
        return {sym: e.price for sym, e in self._entries.items() if self._is_fresh(e)}

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
