from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .ledger import Position
from .order import Order


class ExchangeBase(ABC):
    """Surface the UI/store layer talks to."""

    @abstractmethod
    def place_order(self, pair: str, side: str, amount: float, order_type: str = "market",
                    limit_price: Optional[float] = None) -> Order:
        raise NotImplementedError

    @abstractmethod
    def cancel_order(self, order_id: int) -> Order:
        raise NotImplementedError

    @abstractmethod
    def get_balance(self) -> Dict[str, float]:
        raise NotImplementedError

    @abstractmethod
    def get_active_orders(self) -> List[Order]:
        raise NotImplementedError

    @abstractmethod
    def get_order_history(self) -> List[Order]:
        raise NotImplementedError

    @abstractmethod
    async def get_positions(self) -> List[Position]:
        raise NotImplementedError

    @abstractmethod
    async def get_portfolio_summary(self) -> Dict[str, Any]:
        """Return {total_value, total_pnl, total_pnl_percent, holdings}"""
        raise NotImplementedError
