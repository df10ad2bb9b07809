import pytest

from tradesim.core.errors import InvalidTransitionError, ValidationError
from tradesim.core.order import Execution, Order, OrderStatus, OrderType, Side, require_positive, split_pair


def new_order():
    return Order(id=1, pair="ETH/USDT", type=OrderType.LIMIT, side=Side.SELL, amount=1.0, limit_price=3000.0)


def test_pending_to_open_to_filled():
    o = new_order()
    o.transition(OrderStatus.OPEN, ts=1.0)
    assert o.is_active and not o.is_terminal
    o.transition(OrderStatus.FILLED, ts=2.0, execution=Execution(3000.0, 1.0, 3000.0, 2.0))
    assert o.is_terminal
    assert o.updated_at == 2.0
    assert o.error is None


@pytest.mark.parametrize("terminal", [OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.FAILED])
def test_no_exit_from_terminal_states(terminal):
    o = new_order()
    kwargs = {"execution": Execution(3000.0, 1.0, 3000.0, 1.0)} if terminal == OrderStatus.FILLED else {}
    o.transition(terminal, ts=1.0, error="boom" if terminal == OrderStatus.FAILED else None, **kwargs)
    before = (o.status, o.updated_at, o.execution, o.error)
    for target in OrderStatus:
        with pytest.raises(InvalidTransitionError):
            o.transition(target, ts=5.0, error="late")
    assert (o.status, o.updated_at, o.execution, o.error) == before


def test_open_cannot_go_back_to_pending():
    o = new_order()
    o.transition(OrderStatus.OPEN, ts=1.0)
    with pytest.raises(InvalidTransitionError):
        o.transition(OrderStatus.PENDING, ts=2.0)


def test_fill_requires_execution_and_failure_sets_error():
    o = new_order()
    with pytest.raises(InvalidTransitionError):
        o.transition(OrderStatus.FILLED, ts=1.0)
    assert o.status == OrderStatus.PENDING
    o.transition(OrderStatus.FAILED, ts=1.0, error="Insufficient ETH balance")
    assert o.error == "Insufficient ETH balance"
    assert o.execution is None


def test_helpers():
    assert split_pair("BTC/USDT") == ("BTC", "USDT")
    assert new_order().base == "ETH" and new_order().quote == "USDT"
    assert require_positive("0.5", "amount") == 0.5
    for bad in (None, 0, -1, float("nan"), float("inf"), "abc", True):
        with pytest.raises(ValidationError):
            require_positive(bad, "amount")
