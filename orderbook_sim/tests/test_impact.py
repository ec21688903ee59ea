"""Order-impact simulation: reference scenarios and boundaries."""
import pytest

from orderbook_sim.core.events import BookLevel, Side, SimulatedOrder
from orderbook_sim.sim.impact import find_insertion_index, simulate_order, walk_book
from conftest import make_book


def test_buy_within_best_level(basic_book):
    res = simulate_order(basic_book, SimulatedOrder(side="buy", quantity=0.5))
    assert res.filled_quantity == pytest.approx(0.5)
    assert res.fill_percentage == pytest.approx(100.0)
    assert res.average_fill_price == pytest.approx(100.0)
    assert res.slippage_percent == pytest.approx(0.0)
    assert res.market_impact_percent == pytest.approx(25.0)
    assert res.remaining_quantity == pytest.approx(0.0)
    assert res.total_cost == pytest.approx(50.0)
    assert res.insertion_index is None


def test_buy_walks_two_levels(basic_book):
    res = simulate_order(basic_book, SimulatedOrder(side="buy", quantity=1.5))
    assert res.filled_quantity == pytest.approx(1.5)
    assert res.total_cost == pytest.approx(100.0 + 0.5 * 101.0)
    assert res.average_fill_price == pytest.approx(150.5 / 1.5)


def test_reference_scenario_full_depth(basic_book):
    res = simulate_order(basic_book, SimulatedOrder(side="buy", quantity=2))
    assert res.filled_quantity == pytest.approx(2.0)
    assert res.average_fill_price == pytest.approx(100.5)
    assert res.slippage_percent == pytest.approx(0.5)
    assert res.market_impact_percent == pytest.approx(100.0)
    assert res.remaining_quantity == pytest.approx(0.0)


def test_insufficient_liquidity(basic_book):
    res = simulate_order(basic_book, SimulatedOrder(side="buy", quantity=5))
    assert res.filled_quantity == pytest.approx(2.0)
    assert res.fill_percentage == pytest.approx(40.0)
    assert res.remaining_quantity == pytest.approx(3.0)
    assert res.market_impact_percent == pytest.approx(250.0)
    assert res.average_fill_price == pytest.approx(100.5)


def test_buy_across_two_ask_levels():
    book = make_book(bids=[(99, 1)], asks=[(100, 2), (101, 3)])
    res = simulate_order(book, SimulatedOrder(side="buy", quantity=4))
    assert res.filled_quantity == pytest.approx(4.0)
    assert res.total_cost == pytest.approx(200.0 + 202.0)
    assert res.average_fill_price == pytest.approx(100.5)
    assert res.fill_percentage == pytest.approx(100.0)
    assert res.slippage_percent == pytest.approx(0.5)
    assert res.market_impact_percent == pytest.approx(80.0)
    assert res.remaining_quantity == pytest.approx(0.0)


def test_sell_larger_than_bid_side():
    book = make_book(bids=[(99, 1)])
    res = simulate_order(book, SimulatedOrder(side="sell", quantity=5))
    assert res.filled_quantity == pytest.approx(1.0)
    assert res.fill_percentage == pytest.approx(20.0)
    assert res.remaining_quantity == pytest.approx(4.0)
    assert res.average_fill_price == pytest.approx(99.0)
    assert res.slippage_percent == pytest.approx(0.0)
    assert res.total_cost == pytest.approx(99.0)


def test_sell_walks_bids(basic_book):
    res = simulate_order(basic_book, SimulatedOrder(side="sell", quantity=6))
    assert res.filled_quantity == pytest.approx(6.0)
    assert res.total_cost == pytest.approx(5 * 99.0 + 98.0)
    assert res.average_fill_price == pytest.approx(593.0 / 6)
    assert res.slippage_percent == pytest.approx(abs(593.0 / 6 - 99.0) / 99.0 * 100)
    assert res.market_impact_percent == pytest.approx(60.0)


def test_absent_snapshot_gives_zero_result():
    res = simulate_order(None, SimulatedOrder(side="buy", quantity=3))
    assert res.filled_quantity == 0
    assert res.fill_percentage == 0
    assert res.average_fill_price == 0
    assert res.slippage_percent == 0
    assert res.market_impact_percent == 0
    assert res.total_cost == 0
    assert res.remaining_quantity == 3


def test_empty_side_gives_zero_result():
    book = make_book(bids=[(99, 1)])
    res = simulate_order(book, SimulatedOrder(side="buy", quantity=2, limit_price=100))
    assert res.filled_quantity == 0
    assert res.remaining_quantity == 2
    assert res.insertion_index == 0


def test_simulation_is_deterministic(basic_book):
    order = SimulatedOrder(side="buy", quantity=1.7, limit_price=100.5)
    assert simulate_order(basic_book, order) == simulate_order(basic_book, order)


def test_limit_price_reports_queue_position(basic_book):
    res = simulate_order(basic_book, SimulatedOrder(side="buy", quantity=1, limit_price=99.5))
    assert res.insertion_index == 2
    # the walk itself is not capped by the limit
    assert res.filled_quantity == pytest.approx(1.0)


@pytest.mark.parametrize(
    "side, limit, expected",
    [
        (Side.BUY, 102.0, 0),
        (Side.BUY, 100.0, 0),
        (Side.BUY, 99.5, 2),
        (Side.SELL, 98.0, 0),
        (Side.SELL, 99.0, 0),
        (Side.SELL, 99.5, 2),
    ],
)
def test_find_insertion_index(side, limit, expected):
    levels = [BookLevel(100.0, 1), BookLevel(101.0, 1)] if side is Side.BUY else [BookLevel(99.0, 1), BookLevel(98.0, 1)]
    assert find_insertion_index(levels, side, limit) == expected


def test_walk_book_stops_when_filled():
    levels = [BookLevel(10.0, 1.0), BookLevel(11.0, 1.0), BookLevel(12.0, 1.0)]
    assert walk_book(levels, 1.5) == (1.5, 15.5)
    assert walk_book(levels, 10) == (3.0, 33.0)
    assert walk_book([], 1) == (0.0, 0.0)
