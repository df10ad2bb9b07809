import asyncio
import random
from copy import deepcopy
from typing import Any, Dict, List, Optional, Set, Tuple

from loguru import logger

from ..pricing.resolver import PriceResolver
from .errors import (
    InsufficientBalanceError,
    InvalidTransitionError,
    PriceUnavailableError,
    TradeSimError,
    ValidationError,
)
from .exchange_base import ExchangeBase
from .ledger import OrderLedger, Position
from .order import Execution, Order, OrderStatus, OrderType, Side, require_positive, split_pair


class ExecutionEngine(ExchangeBase):
    def __init__(
        self,
        ledger: OrderLedger,
        resolver: PriceResolver,
        quote_currency: str = "USDT",
        settlement_delay_ms: Tuple[int, int] = (1000, 3000),
        rng: Optional[random.Random] = None,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.quote_currency = quote_currency
        self.settlement_delay_ms = settlement_delay_ms
        self.rng = rng or random.Random()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Order entry
    # ------------------------------------------------------------------
    def place_order(self, pair: str, side: str, amount: float, order_type: str = "market",
                    limit_price: Optional[float] = None) -> Order:
        """Record a pending order and schedule its settlement on the running loop.

        Validation errors are raised here, before anything is recorded. Settlement
        outcomes (fill, open, failed) are written onto the order later.
        """
        try:
            side = Side(side)
            order_type = OrderType(order_type)
        except ValueError as e:
            raise ValidationError(str(e))
        base, quote = split_pair(pair) if isinstance(pair, str) else ("", "")
        if not base or not quote or "/" in quote:
            raise ValidationError(f"pair must look like BASE/QUOTE, got {pair!r}")
        if quote != self.quote_currency:
            # positions are averaged and valued in the quote currency only
            raise ValidationError(f"only {self.quote_currency} pairs are traded, got {pair!r}")
        amount = require_positive(amount, "amount")
        if order_type == OrderType.LIMIT:
            limit_price = require_positive(limit_price, "limit price")
        else:
            limit_price = None
        loop = asyncio.get_running_loop()

        now = self.ledger.clock()
        order = Order(
            id=self.ledger.next_order_id(),
            pair=f"{base}/{quote}",
            type=order_type,
            side=side,
            amount=amount,
            limit_price=limit_price,
            created_at=now,
            updated_at=now,
        )
        self.ledger.append_order(order)

        lo, hi = self.settlement_delay_ms
        delay = self.rng.uniform(lo, hi) / 1000.0
        task = loop.create_task(self._settle_after(order.id, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Placed order {order.id}: {side.value} {amount} {order.pair} {order_type.value}"
                    f"{f' @ {limit_price}' if limit_price is not None else ''} (settles in {delay:.2f}s)")
        return deepcopy(order)

    def cancel_order(self, order_id: int) -> Order:
        order = self.ledger.order_record(order_id)
        if not order.can_transition(OrderStatus.CANCELLED):
            raise InvalidTransitionError(f"Order {order_id} is {order.status.value} and cannot be cancelled")
        self.ledger.transition(order, OrderStatus.CANCELLED)
        logger.info(f"Cancelled order {order_id}")
        return deepcopy(order)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------
    async def _settle_after(self, order_id: int, delay: float):
        await asyncio.sleep(delay)
        await self.process_order(order_id)

    async def process_order(self, order_id: int):
        order = self.ledger.order_record(order_id)
        if order.status != OrderStatus.PENDING:
            logger.info(f"Order {order_id} is {order.status.value}; nothing to settle")
            return
        try:
            price = await self.resolver.get_current_price(order.pair)
            # cancellation can land while the price lookup is suspended
            if order.status != OrderStatus.PENDING:
                logger.info(f"Order {order_id} became {order.status.value} during settlement; skipping")
                return
            if self.can_execute(order, price):
                self.execute_order(order, price)
            else:
                self.ledger.transition(order, OrderStatus.OPEN)
                logger.info(f"Order {order_id} resting at {order.limit_price} (market {price})")
        except Exception as e:
            self._fail(order, e)

    def can_execute(self, order: Order, market_price: float) -> bool:
        if order.type == OrderType.MARKET:
            return True
        if order.side == Side.BUY:
            return market_price <= order.limit_price
        return market_price >= order.limit_price

    def execute_order(self, order: Order, market_price: float) -> Execution:
        """Fill ``order`` against the ledger. No awaits in here: check and mutation are one block."""
        if not order.can_transition(OrderStatus.FILLED):
            raise InvalidTransitionError(f"Order {order.id} is {order.status.value} and cannot be filled")
        executed_price = market_price if order.type == OrderType.MARKET else order.limit_price
        total_value = executed_price * order.amount
        if order.side == Side.BUY:
            available = self.ledger.get_balance(order.quote)
            if available < total_value:
                raise InsufficientBalanceError(order.quote, total_value, available)
        else:
            available = self.ledger.get_balance(order.base)
            if available < order.amount:
                raise InsufficientBalanceError(order.base, order.amount, available)

        execution = Execution(
            executed_price=executed_price,
            executed_amount=order.amount,
            total_value=total_value,
            executed_at=self.ledger.clock(),
        )
        self.ledger.apply_fill(order, execution)
        logger.info(f"Filled order {order.id}: {order.side.value} {order.amount} {order.pair} @ {executed_price} "
                    f"(total {total_value})")
        return execution

    def _fail(self, order: Order, exc: Exception):
        if not order.can_transition(OrderStatus.FAILED):
            logger.warning(f"Order {order.id} already {order.status.value}; dropping error: {exc}")
            return
        self.ledger.transition(order, OrderStatus.FAILED, error=str(exc))
        logger.error(f"Order {order.id} failed: {exc}")

    async def check_open_orders(self) -> List[Order]:
        """Re-run the price check for resting orders; returns the ones that filled or failed."""
        settled = []
        for order in [o for o in self.ledger.orders if o.status == OrderStatus.OPEN]:
            try:
                price = await self.resolver.get_current_price(order.pair)
            except PriceUnavailableError as e:
                logger.warning(f"Skipping open order {order.id}: {e}")
                continue
            if order.status != OrderStatus.OPEN or not self.can_execute(order, price):
                continue
            try:
                self.execute_order(order, price)
            except TradeSimError as e:
                self._fail(order, e)
            settled.append(deepcopy(order))
        return settled

    async def wait_for_settlement(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def pending_settlements(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_balance(self) -> Dict[str, float]:
        return self.ledger.get_balances()

    def get_orders(self) -> List[Order]:
        return self.ledger.get_orders()

    def get_order(self, order_id: int) -> Order:
        return self.ledger.get_order(order_id)

    def get_active_orders(self) -> List[Order]:
        return [o for o in self.ledger.get_orders() if o.is_active]

    def get_order_history(self) -> List[Order]:
        return [o for o in self.ledger.get_orders() if o.is_terminal]

    async def _quote_price(self, currency: str) -> Optional[float]:
        try:
            return await self.resolver.get_current_price(f"{currency}/{self.quote_currency}")
        except PriceUnavailableError as e:
            logger.warning(f"No valuation price for {currency}: {e}")
            return None

    async def get_positions(self) -> List[Position]:
        positions = self.ledger.get_positions()
        for pos in positions:
            price = await self._quote_price(pos.currency)
            pos.unrealized_pnl = pos.pnl_at(price) if price is not None else 0.0
        return positions

    async def get_portfolio_summary(self) -> Dict[str, Any]:
        holdings = []
        total_value = 0.0
        for currency, amount in self.ledger.get_balances().items():
            if currency == self.quote_currency:
                value = amount
            elif amount == 0:
                value = 0.0
            else:
                price = await self._quote_price(currency)
                value = amount * price if price is not None else 0.0
            holdings.append({"currency": currency, "amount": amount, "value": value})
            total_value += value

        positions = await self.get_positions()
        total_pnl = sum(p.unrealized_pnl for p in positions)
        cost_basis = total_value - total_pnl
        return {
            "total_value": total_value,
            "total_pnl": total_pnl,
            "total_pnl_percent": total_pnl / cost_basis * 100 if cost_basis > 0 else 0.0,
            "holdings": holdings,
        }
