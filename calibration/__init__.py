"""
Calibration stages - pure functions over settled history.

Orchestration (stage isolation, timing, state write) lives in
calibration_loop.py.
"""

from .bayesian import PRIOR_STRENGTH, bayesian_rate, prior_for, smoothed_hit_rate
from .correlation_miner import CorrelationReport, mine_correlations
from .gate_tuner import GATE_CEILINGS, GATE_FLOORS, GateDecision, clamp_gates, primary_win_rate, tune_gates
from .recency import HALF_LIFE_DAYS, RecencyStat, recency_hit_rates, recency_weight
from .regime import RegimeReading, SlateContext, detect_regime, regime_multiplier
from .tier_optimizer import optimize_tiers

__all__ = [
    "PRIOR_STRENGTH",
    "bayesian_rate",
    "prior_for",
    "smoothed_hit_rate",
    "CorrelationReport",
    "mine_correlations",
    "GATE_CEILINGS",
    "GATE_FLOORS",
    "GateDecision",
    "clamp_gates",
    "primary_win_rate",
    "tune_gates",
    "HALF_LIFE_DAYS",
    "RecencyStat",
    "recency_hit_rates",
    "recency_weight",
    "RegimeReading",
    "SlateContext",
    "detect_regime",
    "regime_multiplier",
    "optimize_tiers",
]
