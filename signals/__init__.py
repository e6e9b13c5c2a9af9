"""
SIGNALS MODULE - Leg-level signal lookups
=========================================

Modules:
- signal_registry: reliability-weighted probability extractors per engine field
- category_correlation: category normalization, composite/constituent
  correlation, volatility tiers and minimum-line floors
"""

from .category_correlation import (
    COMBO_BASES,
    MIN_LINE_FLOORS,
    are_correlated,
    is_team_category,
    min_line_for,
    normalize_category,
    volatility_for,
)
from .signal_registry import (
    DEFAULT_EXTRACTORS,
    SignalExtractor,
    SignalRegistry,
    get_registry,
    register_extractor,
)

__all__ = [
    "COMBO_BASES",
    "MIN_LINE_FLOORS",
    "are_correlated",
    "is_team_category",
    "min_line_for",
    "normalize_category",
    "volatility_for",
    "DEFAULT_EXTRACTORS",
    "SignalExtractor",
    "SignalRegistry",
    "get_registry",
    "register_extractor",
]
