import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from .errors import InvalidTransitionError, ValidationError


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    PENDING = "pending"
    OPEN = "open"  # resting limit order
    FILLED = "filled"
    CANCELLED = "cancelled"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.OPEN, OrderStatus.FILLED, OrderStatus.FAILED, OrderStatus.CANCELLED},
    OrderStatus.OPEN: {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.FAILED},
    OrderStatus.FILLED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.FAILED: set(),
}

ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.OPEN)


def split_pair(pair: str) -> Tuple[str, str]:
    base, _, quote = pair.partition("/")
    return base, quote


def require_positive(value: Any, name: str) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required")
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(v) or v <= 0:
        raise ValidationError(f"{name} must be positive, got {value!r}")
    return v


@dataclass(frozen=True)
class Execution:
    executed_price: float
    executed_amount: float
    total_value: float
    executed_at: float


@dataclass
class Order:
    id: int
    pair: str  # BASE/QUOTE
    type: OrderType
    side: Side
    amount: float  # base units
    limit_price: Optional[float] = None  # None for market orders
    status: OrderStatus = OrderStatus.PENDING
    created_at: float = 0.0
    updated_at: float = 0.0
    execution: Optional[Execution] = None
    error: Optional[str] = None

    @property
    def base(self) -> str:
        return split_pair(self.pair)[0]

    @property
    def quote(self) -> str:
        return split_pair(self.pair)[1]

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    def can_transition(self, status: OrderStatus) -> bool:
        return OrderStatus(status) in ALLOWED_TRANSITIONS[self.status]

    def transition(self, status: OrderStatus, ts: float, error: Optional[str] = None,
                   execution: Optional[Execution] = None):
        """Move to ``status``; ``execution`` only with filled, ``error`` only with failed."""
        status = OrderStatus(status)
        if not self.can_transition(status):
            raise InvalidTransitionError(f"Order {self.id} cannot move from {self.status.value} to {status.value}")
        if status == OrderStatus.FILLED and execution is None:
            raise InvalidTransitionError(f"Order {self.id} cannot be filled without execution details")
        if status == OrderStatus.FAILED and not error:
            error = "unknown error"
        self.status = status
        self.updated_at = ts
        if status == OrderStatus.FILLED:
            self.execution = execution
        if status == OrderStatus.FAILED:
            self.error = error
