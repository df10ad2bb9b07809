from typing import Optional


class TradeSimError(Exception):
    """Base class for every error raised by the simulated exchange."""


class ValidationError(TradeSimError):
    pass


class InsufficientBalanceError(TradeSimError):
    def __init__(self, currency: str, required: float, available: float):
        self.currency = currency
        self.required = required
        self.available = available
        super().__init__(f"Insufficient {currency} balance: required {required}, available {available}")


class PriceSourceError(TradeSimError):
    """Upstream ticker lookup failed (timeout, HTTP error, bad payload)."""


class PriceUnavailableError(TradeSimError):
    def __init__(self, pair: str, cause: Optional[Exception] = None):
        self.pair = pair
        msg = f"No price available for {pair}"
        if cause is not None:
            msg += f" ({cause})"
        super().__init__(msg)


class OrderNotFoundError(TradeSimError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidTransitionError(TradeSimError):
    pass
