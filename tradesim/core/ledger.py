from copy import deepcopy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional
import time

from loguru import logger

from .errors import InsufficientBalanceError, InvalidTransitionError, OrderNotFoundError, ValidationError
from .order import Execution, Order, OrderStatus, Side


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRADE = "trade"


@dataclass(frozen=True)
class Transaction:
    id: int
    type: TransactionType
    timestamp: float
    amount: float
    currency: Optional[str] = None
    pair: Optional[str] = None
    side: Optional[Side] = None
    price: Optional[float] = None
    total: Optional[float] = None
    order_id: Optional[int] = None
    address: Optional[str] = None
    status: str = "completed"
    tx_hash: Optional[str] = None


@dataclass
class Position:
    currency: str
    amount: float = 0.0  # base units, never negative
    avg_price: float = 0.0
    updated_at: float = 0.0
    unrealized_pnl: float = 0.0  # filled in on valuation

    @property
    def total_value(self) -> float:
        return self.amount * self.avg_price

    def pnl_at(self, price: float) -> float:
        return self.amount * price - self.total_value


@dataclass
class OrderLedger:
    """Authoritative store of balances, orders, positions and the transaction log.

    Reads hand out copies. Mutations are only performed by the engine and the
    wallet recorder; validation happens there, the ledger only refuses to drive
    a balance negative.
    """

    balances: Dict[str, float] = field(default_factory=dict)
    orders: List[Order] = field(default_factory=list)
    positions: Dict[str, Position] = field(default_factory=dict)
    transactions: List[Transaction] = field(default_factory=list)  # newest first
    clock: Callable[[], float] = time.time
    _order_seq: int = 0
    _tx_seq: int = 0
    _listeners: List[Callable[[Transaction], None]] = field(default_factory=list)

    # ---- reads ----
    def get_balances(self) -> Dict[str, float]:
        return dict(self.balances)

    def get_balance(self, currency: str) -> float:
        return self.balances.get(currency, 0.0)

    def get_orders(self) -> List[Order]:
        return [deepcopy(o) for o in self.orders]

    def get_order(self, order_id: int) -> Order:
        return deepcopy(self.order_record(order_id))

    def get_positions(self) -> List[Position]:
        return [replace(p) for p in self.positions.values()]

    def get_position(self, currency: str) -> Optional[Position]:
        pos = self.positions.get(currency)
        return replace(pos) if pos is not None else None

    def get_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        if limit is None:
            return list(self.transactions)
        return self.transactions[:limit]

    def order_record(self, order_id: int) -> Order:
        for o in self.orders:
            if o.id == order_id:
                return o
        raise OrderNotFoundError(order_id)

    # ---- mutation primitives ----
    def next_order_id(self) -> int:
        self._order_seq += 1
        return self._order_seq

    def add_listener(self, callback: Callable[[Transaction], None]):
        self._listeners.append(callback)

    def credit(self, currency: str, amount: float) -> float:
        if amount < 0:
            raise ValidationError(f"cannot credit a negative amount of {currency}: {amount}")
        self.balances[currency] = self.balances.get(currency, 0.0) + amount
        return self.balances[currency]

    def debit(self, currency: str, amount: float) -> float:
        available = self.balances.get(currency, 0.0)
        if available < amount:
            raise InsufficientBalanceError(currency, amount, available)
        self.balances[currency] = available - amount
        return self.balances[currency]

    def append_order(self, order: Order):
        self.orders.append(order)

    def append_transaction(self, tx_type: TransactionType, amount: float, **fields) -> Transaction:
        self._tx_seq += 1
        tx = Transaction(id=self._tx_seq, type=tx_type, timestamp=self.clock(), amount=amount, **fields)
        self.transactions.insert(0, tx)
        for cb in self._listeners:
            try:
                cb(tx)
            except Exception as e:
                logger.warning(f"Transaction listener failed for tx {tx.id}: {e}")
        return tx

    def upsert_position(self, currency: str, side: Side, amount: float, price: float) -> Optional[Position]:
        pos = self.positions.get(currency)
        if pos is None:
            if side == Side.SELL:
                # selling deposited coins: nothing was bought, nothing to track
                return None
            pos = Position(currency=currency)
            self.positions[currency] = pos
        if side == Side.BUY:
            new_amount = pos.amount + amount
            pos.avg_price = (pos.total_value + amount * price) / new_amount
            pos.amount = new_amount
        else:
            # deposited coins have no entry price; never go below flat
            pos.amount = max(0.0, pos.amount - amount)
        pos.updated_at = self.clock()
        return pos

    def transition(self, order: Order, status: OrderStatus, error: Optional[str] = None):
        order.transition(status, self.clock(), error=error)

    def apply_fill(self, order: Order, execution: Execution) -> Transaction:
        """Debit, credit, fill the order, record the trade and move the position in one step."""
        if not order.can_transition(OrderStatus.FILLED):
            raise InvalidTransitionError(f"Order {order.id} is {order.status.value} and cannot be filled")
        base, quote = order.base, order.quote
        if order.side == Side.BUY:
            self.debit(quote, execution.total_value)
            self.credit(base, execution.executed_amount)
        else:
            self.debit(base, execution.executed_amount)
            self.credit(quote, execution.total_value)
        order.transition(OrderStatus.FILLED, execution.executed_at, execution=execution)
        tx = self.append_transaction(
            TransactionType.TRADE,
            execution.executed_amount,
            pair=order.pair,
            side=order.side,
            price=execution.executed_price,
            total=execution.total_value,
            order_id=order.id,
        )
        self.upsert_position(base, order.side, execution.executed_amount, execution.executed_price)
        return tx
