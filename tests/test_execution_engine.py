import asyncio
import math
import random

import pytest

from tradesim.core.errors import InvalidTransitionError, OrderNotFoundError, PriceSourceError, ValidationError
from tradesim.core.execution_engine import ExecutionEngine
from tradesim.core.ledger import OrderLedger, TransactionType
from tradesim.core.order import OrderStatus
from tradesim.pricing.price_cache import PriceCache
from tradesim.pricing.price_source import PriceSource, StaticPriceSource, Ticker
from tradesim.pricing.resolver import PriceResolver


class GatedSource(PriceSource):
    """Holds every lookup until ``release`` is set."""

    def __init__(self, price):
        self.price = price
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_ticker(self, symbol):
        self.started.set()
        await self.release.wait()
        return Ticker(symbol=symbol, last_price=self.price)


class DownSource(PriceSource):
    async def fetch_ticker(self, symbol):
        raise PriceSourceError("timeout")


def make_engine(balances=None, prices=None, source=None, **resolver_kw):
    ledger = OrderLedger(balances=dict(balances or {"USDT": 10000.0}))
    src = source or StaticPriceSource(prices or {"BTCUSDT": 43250.0, "ETHUSDT": 2650.0})
    resolver = PriceResolver(PriceCache(), src, min_interval_ms=0, **resolver_kw)
    engine = ExecutionEngine(ledger, resolver, settlement_delay_ms=(0, 0))
    return engine, src


@pytest.mark.asyncio
async def test_market_buy_scenario():
    engine, _ = make_engine()
    order = engine.place_order("BTC/USDT", "buy", 0.1)
    # visible immediately as pending
    assert order.status == OrderStatus.PENDING
    assert [o.id for o in engine.get_active_orders()] == [order.id]

    await engine.wait_for_settlement()

    bal = engine.get_balance()
    assert math.isclose(bal["USDT"], 5675.0, rel_tol=1e-12)
    assert math.isclose(bal["BTC"], 0.1, rel_tol=1e-12)
    filled = engine.get_order(order.id)
    assert filled.status == OrderStatus.FILLED
    assert filled.execution.executed_price == 43250.0
    assert math.isclose(filled.execution.total_value, 4325.0)
    txs = engine.ledger.get_transactions()
    assert len(txs) == 1
    assert txs[0].type == TransactionType.TRADE
    assert math.isclose(txs[0].total, 4325.0)
    assert engine.get_active_orders() == []
    assert [o.id for o in engine.get_order_history()] == [order.id]


@pytest.mark.asyncio
async def test_limit_sell_above_market_rests_open_then_fills_on_recheck():
    engine, src = make_engine(balances={"USDT": 10000.0, "ETH": 1.0})
    order = engine.place_order("ETH/USDT", "sell", 1, order_type="limit", limit_price=3000)
    await engine.wait_for_settlement()

    assert engine.get_order(order.id).status == OrderStatus.OPEN
    assert engine.get_balance() == {"USDT": 10000.0, "ETH": 1.0}
    assert engine.ledger.get_transactions() == []

    # price below limit: still resting
    assert await engine.check_open_orders() == []

    src.set_price("ETHUSDT", 3100.0)
    engine.resolver.cache.clear()
    settled = await engine.check_open_orders()
    assert [o.id for o in settled] == [order.id]
    filled = engine.get_order(order.id)
    assert filled.status == OrderStatus.FILLED
    # limit orders execute at their limit price
    assert filled.execution.executed_price == 3000.0
    assert engine.get_balance() == {"USDT": 13000.0, "ETH": 0.0}


@pytest.mark.asyncio
async def test_limit_buy_at_or_below_limit_fills_at_limit_price():
    engine, _ = make_engine()
    order = engine.place_order("ETH/USDT", "buy", 2, order_type="limit", limit_price=2650)
    await engine.wait_for_settlement()
    o = engine.get_order(order.id)
    assert o.status == OrderStatus.FILLED
    assert math.isclose(engine.get_balance()["USDT"], 10000.0 - 5300.0)


@pytest.mark.asyncio
async def test_insufficient_balance_fails_without_mutation():
    engine, _ = make_engine()
    order = engine.place_order("BTC/USDT", "buy", 1)
    await engine.wait_for_settlement()
    o = engine.get_order(order.id)
    assert o.status == OrderStatus.FAILED
    assert "Insufficient USDT" in o.error
    assert o.execution is None
    assert engine.get_balance() == {"USDT": 10000.0}
    assert engine.ledger.get_transactions() == []
    assert engine.ledger.get_positions() == []


@pytest.mark.asyncio
async def test_sell_without_base_balance_fails():
    engine, _ = make_engine()
    order = engine.place_order("BTC/USDT", "sell", 0.5)
    await engine.wait_for_settlement()
    o = engine.get_order(order.id)
    assert o.status == OrderStatus.FAILED
    assert "Insufficient BTC" in o.error


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"pair": "BTCUSDT", "side": "buy", "amount": 1},
    {"pair": "BTC/USDT", "side": "hold", "amount": 1},
    {"pair": "BTC/USDT", "side": "buy", "amount": 0},
    {"pair": "BTC/USDT", "side": "buy", "amount": -2},
    {"pair": "BTC/USDT", "side": "buy", "amount": 1, "order_type": "stop"},
    {"pair": "BTC/USDT", "side": "buy", "amount": 1, "order_type": "limit"},
    {"pair": "BTC/USDT", "side": "buy", "amount": 1, "order_type": "limit", "limit_price": 0},
    {"pair": "ETH/BTC", "side": "buy", "amount": 1},
])
async def test_invalid_requests_rejected_before_any_state_change(kwargs):
    engine, _ = make_engine()
    with pytest.raises(ValidationError):
        engine.place_order(**kwargs)
    assert engine.get_orders() == []
    assert engine.pending_settlements == 0


def test_place_order_needs_running_loop():
    engine, _ = make_engine()
    with pytest.raises(RuntimeError):
        engine.place_order("BTC/USDT", "buy", 0.1)
    assert engine.get_orders() == []


@pytest.mark.asyncio
async def test_cancel_pending_order_before_settlement():
    engine, _ = make_engine()
    order = engine.place_order("BTC/USDT", "buy", 0.1)
    cancelled = engine.cancel_order(order.id)
    assert cancelled.status == OrderStatus.CANCELLED
    await engine.wait_for_settlement()
    assert engine.get_order(order.id).status == OrderStatus.CANCELLED
    assert engine.get_balance() == {"USDT": 10000.0}


@pytest.mark.asyncio
async def test_cancel_during_price_lookup_is_not_filled():
    src = GatedSource(43250.0)
    engine, _ = make_engine(source=src)
    order = engine.place_order("BTC/USDT", "buy", 0.1)
    await src.started.wait()

    engine.cancel_order(order.id)
    src.release.set()
    await engine.wait_for_settlement()

    o = engine.get_order(order.id)
    assert o.status == OrderStatus.CANCELLED
    assert o.execution is None
    assert engine.get_balance() == {"USDT": 10000.0}
    assert engine.ledger.get_transactions() == []


@pytest.mark.asyncio
async def test_cancel_open_order_and_errors_for_terminal_or_unknown():
    engine, _ = make_engine(balances={"ETH": 1.0})
    resting = engine.place_order("ETH/USDT", "sell", 1, order_type="limit", limit_price=5000)
    await engine.wait_for_settlement()
    assert engine.cancel_order(resting.id).status == OrderStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        engine.cancel_order(resting.id)
    with pytest.raises(OrderNotFoundError):
        engine.cancel_order(999)


@pytest.mark.asyncio
async def test_filled_order_is_immutable():
    engine, _ = make_engine()
    order = engine.place_order("BTC/USDT", "buy", 0.1)
    await engine.wait_for_settlement()
    before = engine.get_order(order.id)
    balances = engine.get_balance()

    with pytest.raises(InvalidTransitionError):
        engine.cancel_order(order.id)
    with pytest.raises(InvalidTransitionError):
        engine.execute_order(engine.ledger.order_record(order.id), 40000.0)
    await engine.process_order(order.id)  # no-op

    assert engine.get_order(order.id) == before
    assert engine.get_balance() == balances


@pytest.mark.asyncio
async def test_price_source_down_uses_default_price():
    engine, _ = make_engine(source=DownSource())
    order = engine.place_order("BTC/USDT", "buy", 0.1)
    await engine.wait_for_settlement()
    o = engine.get_order(order.id)
    assert o.status == OrderStatus.FILLED
    assert o.execution.executed_price == 43250.0


@pytest.mark.asyncio
async def test_no_price_at_all_marks_order_failed():
    engine, _ = make_engine(source=DownSource(), fallback_price=None)
    order = engine.place_order("DOGE/USDT", "buy", 10)
    await engine.wait_for_settlement()
    o = engine.get_order(order.id)
    assert o.status == OrderStatus.FAILED
    assert "No price available" in o.error
    assert engine.get_balance() == {"USDT": 10000.0}


@pytest.mark.asyncio
async def test_weighted_average_over_two_buys():
    engine, src = make_engine()
    engine.place_order("BTC/USDT", "buy", 0.1)
    await engine.wait_for_settlement()
    src.set_price("BTCUSDT", 45000.0)
    engine.resolver.cache.clear()
    engine.place_order("BTC/USDT", "buy", 0.1)
    await engine.wait_for_settlement()

    pos = engine.ledger.get_position("BTC")
    assert math.isclose(pos.avg_price, (0.1 * 43250.0 + 0.1 * 45000.0) / 0.2, rel_tol=1e-12)
    assert math.isclose(pos.amount, 0.2, rel_tol=1e-12)


@pytest.mark.asyncio
async def test_sell_conserves_and_keeps_avg_price():
    engine, src = make_engine()
    engine.place_order("BTC/USDT", "buy", 0.2)
    await engine.wait_for_settlement()
    src.set_price("BTCUSDT", 50000.0)
    engine.resolver.cache.clear()
    before = engine.get_balance()
    engine.place_order("BTC/USDT", "sell", 0.05)
    await engine.wait_for_settlement()
    after = engine.get_balance()

    assert math.isclose(after["USDT"] - before["USDT"], 0.05 * 50000.0, rel_tol=1e-12)
    assert math.isclose(before["BTC"] - after["BTC"], 0.05, rel_tol=1e-9)
    pos = engine.ledger.get_position("BTC")
    assert math.isclose(pos.avg_price, 43250.0, rel_tol=1e-12)
    assert math.isclose(pos.amount, 0.15, rel_tol=1e-9)


@pytest.mark.asyncio
async def test_positions_and_portfolio_summary():
    engine, src = make_engine()
    engine.place_order("BTC/USDT", "buy", 0.1)
    await engine.wait_for_settlement()
    src.set_price("BTCUSDT", 45000.0)
    engine.resolver.cache.clear()

    positions = await engine.get_positions()
    assert len(positions) == 1
    assert math.isclose(positions[0].unrealized_pnl, 175.0, rel_tol=1e-9)
    # valuation does not write back into the ledger
    assert engine.ledger.get_position("BTC").unrealized_pnl == 0.0

    summary = await engine.get_portfolio_summary()
    assert math.isclose(summary["total_value"], 5675.0 + 4500.0, rel_tol=1e-9)
    assert math.isclose(summary["total_pnl"], 175.0, rel_tol=1e-9)
    assert math.isclose(summary["total_pnl_percent"], 1.75, rel_tol=1e-9)
    by_cur = {h["currency"]: h for h in summary["holdings"]}
    assert math.isclose(by_cur["BTC"]["value"], 4500.0, rel_tol=1e-9)


@pytest.mark.asyncio
async def test_empty_portfolio_summary():
    engine, _ = make_engine(balances={"USDT": 0.0})
    summary = await engine.get_portfolio_summary()
    assert summary["total_value"] == 0.0
    assert summary["total_pnl_percent"] == 0.0


@pytest.mark.asyncio
async def test_random_order_flow_never_drives_a_balance_negative():
    rng = random.Random(7)
    engine, src = make_engine(balances={"USDT": 5000.0, "ETH": 1.0})
    for _ in range(40):
        pair = rng.choice(["BTC/USDT", "ETH/USDT"])
        side = rng.choice(["buy", "sell"])
        amount = rng.choice([0.01, 0.05, 0.5, 1.0, 3.0])
        src.set_price(pair.replace("/", ""), rng.uniform(1000, 60000))
        engine.resolver.cache.clear()
        engine.place_order(pair, side, amount)
        await engine.wait_for_settlement()
        assert all(v >= 0 for v in engine.get_balance().values())
        assert all(p.amount >= 0 for p in engine.ledger.get_positions())
    statuses = {o.status for o in engine.get_orders()}
    assert statuses <= {OrderStatus.FILLED, OrderStatus.FAILED}
    fills = [o for o in engine.get_orders() if o.status == OrderStatus.FILLED]
    assert len(engine.ledger.get_transactions()) == len(fills)


@pytest.mark.asyncio
async def test_resting_buy_fails_on_recheck_when_balance_is_gone():
    engine, src = make_engine(balances={"USDT": 3000.0})
    order = engine.place_order("ETH/USDT", "buy", 1, order_type="limit", limit_price=2500)
    await engine.wait_for_settlement()
    assert engine.get_order(order.id).status == OrderStatus.OPEN

    # the quote balance is spent elsewhere while the order rests
    engine.ledger.debit("USDT", 1000.0)
    src.set_price("ETHUSDT", 2400.0)
    engine.resolver.cache.clear()
    settled = await engine.check_open_orders()

    assert [o.id for o in settled] == [order.id]
    o = engine.get_order(order.id)
    assert o.status == OrderStatus.FAILED
    assert "Insufficient USDT" in o.error
    assert o.execution is None
    assert engine.get_balance() == {"USDT": 2000.0}
    assert engine.ledger.get_transactions() == []


@pytest.mark.asyncio
async def test_recheck_without_any_price_leaves_order_open():
    src = StaticPriceSource({"ETHUSDT": 2650.0})
    engine, _ = make_engine(balances={"ETH": 1.0}, source=src, fallback_price=None, default_prices={})
    order = engine.place_order("ETH/USDT", "sell", 1, order_type="limit", limit_price=3000)
    await engine.wait_for_settlement()
    assert engine.get_order(order.id).status == OrderStatus.OPEN

    del src.prices["ETHUSDT"]
    engine.resolver.cache.clear()
    assert await engine.check_open_orders() == []
    assert engine.get_order(order.id).status == OrderStatus.OPEN
    assert engine.get_balance() == {"ETH": 1.0}
