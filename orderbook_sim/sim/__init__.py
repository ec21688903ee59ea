"""Order-impact simulation and book analytics (pure functions)."""

from .impact import find_insertion_index, simulate_order, walk_book  # noqa: F401
from .analytics import (  # noqa: F401
    cumulative_depth,
    estimate_time_to_fill,
    imbalance_percentage,
    mid_price,
    spread,
    spread_percentage,
)

__all__ = [
    "simulate_order",
    "find_insertion_index",
    "walk_book",
    "spread",
    "spread_percentage",
    "mid_price",
    "imbalance_percentage",
    "cumulative_depth",
    "estimate_time_to_fill",
]
