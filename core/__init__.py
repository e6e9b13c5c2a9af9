"""
Core module - shared types, odds math, time and error handling
"""

from .odds_math import (
    DEFAULT_PRICE,
    american_to_implied,
    american_to_decimal,
    decimal_to_american,
    combined_american_price,
)

# Import time_et (SINGLE SOURCE OF TRUTH for ET timezone)
from .time_et import (
    now_et,
    period_key,
    age_days,
)

from .error_responses import ErrorCode, SlipEngineError, make_error

__all__ = [
    # Odds math
    'DEFAULT_PRICE',
    'american_to_implied',
    'american_to_decimal',
    'decimal_to_american',
    'combined_american_price',

    # Time handling (SINGLE SOURCE OF TRUTH)
    'now_et',
    'period_key',
    'age_days',

    # Errors
    'ErrorCode',
    'SlipEngineError',
    'make_error',
]
