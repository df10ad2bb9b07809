from typing import Dict, Optional
import yaml
from pydantic import BaseModel, model_validator
from dotenv import load_dotenv
import os

from ..pricing.resolver import DEFAULT_PRICES
from ..pricing.price_source import DEFAULT_TICKER_URL


class EngineConfig(BaseModel):
    quote_currency: str = "USDT"
    starting_balances: Dict[str, float] = {
        "USDT": 10000.0,
        "BTC": 0.0,
        "ETH": 0.0,
        "ADA": 0.0,
        "SOL": 0.0,
        "BNB": 0.0,
    }
    settlement_delay_min_ms: int = 1000
    settlement_delay_max_ms: int = 3000

    @model_validator(mode="after")
    def _check(self):
        if self.settlement_delay_min_ms < 0 or self.settlement_delay_max_ms < self.settlement_delay_min_ms:
            raise ValueError("settlement delay window must satisfy 0 <= min <= max")
        if any(v < 0 for v in self.starting_balances.values()):
            raise ValueError("starting balances cannot be negative")
        return self


class PricingConfig(BaseModel):
    source: str = "binance"  # binance | static
    rest_ticker: str = DEFAULT_TICKER_URL
    timeout: float = 5.0
    max_retries: int = 2
    backoff: float = 0.5
    cache_ttl_sec: float = 30.0
    min_interval_ms: int = 1000
    default_prices: Dict[str, float] = dict(DEFAULT_PRICES)
    fallback_price: Optional[float] = 100.0


class WalletConfig(BaseModel):
    deposit_delay_ms: int = 2000
    withdraw_delay_ms: int = 3000


class LoggingConfig(BaseModel):
    log_dir: str = "logs"
    journal: bool = True
    transactions_csv_path: str = "logs/transactions.csv"
    equity_csv_path: str = "logs/equity.csv"


class Config(BaseModel):
    engine: EngineConfig = EngineConfig()
    pricing: PricingConfig = PricingConfig()
    wallet: WalletConfig = WalletConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Optional[str] = None) -> Config:
    load_dotenv()
    data = {}
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    # env (or .env) supplies the ticker URL unless the file sets one
    ticker_url = os.getenv("TRADESIM_TICKER_URL")
    if ticker_url:
        pricing = data.get("pricing") or {}
        pricing.setdefault("rest_ticker", ticker_url)
        data["pricing"] = pricing
    return Config(**data)
