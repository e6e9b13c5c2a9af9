"""
validators - Slip Legality Rules
Version: 1.0

Pure predicates the selector runs while building combinations.
"""

from .slip_constraints import (
    ConstraintCheck,
    ConstraintConfig,
    count_events,
    first_violation,
    is_legal_combination,
    validate_leg,
)

__all__ = [
    "ConstraintCheck",
    "ConstraintConfig",
    "count_events",
    "first_violation",
    "is_legal_combination",
    "validate_leg",
]
