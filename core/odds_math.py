"""
ODDS_MATH.PY - American odds conversions

Single source of truth for price math used by the estimator, the scorer and
the slip pricing. All prices are American odds (e.g. -110, +150).

Usage:
    from core.odds_math import american_to_implied, combined_american_price

    american_to_implied(-110)           # 0.5238
    combined_american_price([-110, -110])  # +264
"""

import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# ============================================
# CONSTANTS
# ============================================

DEFAULT_PRICE = -110  # Used when an engine record carries no odds


def american_to_implied(odds: Optional[float]) -> float:
    """
    Convert American odds to the book-implied probability.

    -110 -> 0.5238, +150 -> 0.4. A missing price is treated as DEFAULT_PRICE.
    """
    if odds is None or odds == 0:
        odds = DEFAULT_PRICE
    if odds >= 100:
        return 100.0 / (odds + 100.0)
    return abs(odds) / (abs(odds) + 100.0)


def american_to_decimal(odds: Optional[float]) -> float:
    """Convert American odds to decimal odds (stake included)."""
    if odds is None or odds == 0:
        odds = DEFAULT_PRICE
    if odds >= 100:
        return odds / 100.0 + 1.0
    return 100.0 / abs(odds) + 1.0


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds back to a rounded American price."""
    if decimal_odds <= 1.0:
        raise ValueError(f"decimal odds must be > 1.0, got {decimal_odds}")
    if decimal_odds >= 2.0:
        return int(round((decimal_odds - 1.0) * 100))
    return int(round(-100 / (decimal_odds - 1.0)))


def combined_american_price(prices: Iterable[Optional[float]]) -> int:
    """Price of a parlay: product of the legs' decimal odds, as American."""
    decimal_total = 1.0
    for price in prices:
        decimal_total *= american_to_decimal(price)
    return decimal_to_american(decimal_total)
