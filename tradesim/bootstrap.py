from dataclasses import dataclass
import random
from typing import Optional

from .core.execution_engine import ExecutionEngine
from .core.ledger import OrderLedger
from .pricing.price_cache import PriceCache
from .pricing.price_source import BinanceTickerSource, PriceSource, StaticPriceSource
from .pricing.resolver import PriceResolver, to_symbol
from .utils.config import Config
from .utils.trade_log import TransactionLogger
from .wallet.recorder import WalletRecorder


@dataclass
class Services:
    cache: PriceCache
    source: PriceSource
    resolver: PriceResolver
    ledger: OrderLedger
    engine: ExecutionEngine
    wallet: WalletRecorder
    journal: Optional[TransactionLogger] = None


def build_source(cfg: Config) -> PriceSource:
    if cfg.pricing.source == "binance":
        return BinanceTickerSource(
            rest_ticker=cfg.pricing.rest_ticker,
            timeout=cfg.pricing.timeout,
            max_retries=cfg.pricing.max_retries,
            backoff=cfg.pricing.backoff,
        )
    if cfg.pricing.source == "static":
        return StaticPriceSource({to_symbol(p): px for p, px in cfg.pricing.default_prices.items()})
    raise ValueError(f"Unknown price source {cfg.pricing.source}")


def build_services(cfg: Config, source: Optional[PriceSource] = None, rng: Optional[random.Random] = None,
                   journal: Optional[TransactionLogger] = None) -> Services:
    """Construct every service once; callers pass the returned references around."""
    cache = PriceCache(ttl_sec=cfg.pricing.cache_ttl_sec)
    source = source or build_source(cfg)
    resolver = PriceResolver(
        cache,
        source,
        default_prices=cfg.pricing.default_prices,
        fallback_price=cfg.pricing.fallback_price,
        min_interval_ms=cfg.pricing.min_interval_ms,
    )
    ledger = OrderLedger(balances=dict(cfg.engine.starting_balances))
    if journal is not None:
        ledger.add_listener(journal.log_transaction)
    engine = ExecutionEngine(
        ledger,
        resolver,
        quote_currency=cfg.engine.quote_currency,
        settlement_delay_ms=(cfg.engine.settlement_delay_min_ms, cfg.engine.settlement_delay_max_ms),
        rng=rng,
    )
    wallet = WalletRecorder(
        ledger,
        deposit_delay_ms=cfg.wallet.deposit_delay_ms,
        withdraw_delay_ms=cfg.wallet.withdraw_delay_ms,
    )
    return Services(cache, source, resolver, ledger, engine, wallet, journal)
