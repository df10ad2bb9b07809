from .price_cache import PriceCache, PriceCacheEntry
from .price_source import BinanceTickerSource, PriceSource, StaticPriceSource, Ticker
from .resolver import DEFAULT_PRICES, PriceResolver

__all__ = [
    "PriceCache",
    "PriceCacheEntry",
    "PriceSource",
    "BinanceTickerSource",
    "StaticPriceSource",
    "Ticker",
    "PriceResolver",
    "DEFAULT_PRICES",
]
