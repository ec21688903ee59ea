import pytest

from orderbook_sim.core.events import BookLevel
from orderbook_sim.sim.analytics import (
    cumulative_depth,
    estimate_time_to_fill,
    imbalance_percentage,
    mid_price,
    spread,
    spread_percentage,
)
from conftest import make_book


def test_spread_and_mid(basic_book):
    assert spread(basic_book) == pytest.approx(1.0)
    assert mid_price(basic_book) == pytest.approx(99.5)
    assert spread_percentage(basic_book) == pytest.approx(1.0 / 99.5 * 100)


def test_imbalance(basic_book):
    # 10 on the bid side, 2 on the ask side
    assert imbalance_percentage(basic_book) == pytest.approx((10 - 2) / 12 * 100)


def test_one_sided_and_empty_books_are_zero():
    one_sided = make_book(bids=[(99, 1)])
    for fn in (spread, mid_price, spread_percentage):
        assert fn(one_sided) == 0
        assert fn(make_book()) == 0
    assert imbalance_percentage(make_book()) == 0
    assert imbalance_percentage(one_sided) == pytest.approx(100.0)


def test_cumulative_depth():
    levels = [BookLevel(100, 1), BookLevel(101, 2), BookLevel(102, 3)]
    assert cumulative_depth(levels) == [(100, 1, 1), (101, 2, 3), (102, 3, 6)]
    assert cumulative_depth(levels, limit=2) == [(100, 1, 1), (101, 2, 3)]
    assert cumulative_depth([]) == []


def test_time_to_fill():
    levels = [BookLevel(100, 150), BookLevel(101, 100)]
    assert estimate_time_to_fill(50, levels) == 1
    assert estimate_time_to_fill(250, levels) == 3
    assert estimate_time_to_fill(450, levels) == 2 + 60
    assert estimate_time_to_fill(450, levels, avg_volume_per_second=50) == 4 + 60
    assert estimate_time_to_fill(0, levels) == 0
    assert estimate_time_to_fill(10, []) == 1 + 60
