"""
Pure domain layer.

Value objects with NO dependencies on persistence, transport or clocks.
All domain objects are immutable and deterministic.
"""

from books_kernel.domain.values import (
    DECIMAL_PLACES,
    HUNDRED,
    TWO_PLACES,
    Money,
    money_max,
    money_min,
    money_sum,
    to_decimal,
)

__all__ = [
    "DECIMAL_PLACES",
    "HUNDRED",
    "TWO_PLACES",
    "Money",
    "money_max",
    "money_min",
    "money_sum",
    "to_decimal",
]
