"""
Gate auto-tuner - nudge the selector's quality gates from trailing results.

Primary-tier win rate over the last WINDOW_DAYS (needs MIN_SAMPLES):
    > RELAX_WIN_RATE   -> every gate * (1 - GATE_STEP)   (more volume)
    < TIGHTEN_WIN_RATE -> every gate * (1 + GATE_STEP)   (more quality)
    otherwise          -> hold

Every gate is clamped into [GATE_FLOORS, GATE_CEILINGS] on every cycle, so
no streak length can walk a gate out of its band. Previous gates that are
already outside the band (hand-edited rows) are pulled back in as well.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Tuple

from core.slip_types import Gates, SettledSlip
from core.time_et import age_days, utc_now
from tiering import TIER_PRIMARY

logger = logging.getLogger(__name__)

# ============================================
# CONSTANTS (Single Source of Truth)
# ============================================

GATE_FLOORS = Gates(min_edge=0.001, min_hit_rate=40.0, min_sharpe=0.005, min_composite=50.0)
GATE_CEILINGS = Gates(min_edge=0.05, min_hit_rate=70.0, min_sharpe=0.15, min_composite=95.0)
GATE_STEP = 0.05
RELAX_WIN_RATE = 0.60
TIGHTEN_WIN_RATE = 0.40
WINDOW_DAYS = 14
MIN_SAMPLES = 5

GATE_FIELDS = ("min_edge", "min_hit_rate", "min_sharpe", "min_composite")
_ROUNDING = {"min_edge": 6, "min_hit_rate": 3, "min_sharpe": 6, "min_composite": 3}

ACTION_RELAX = "relax"
ACTION_TIGHTEN = "tighten"
ACTION_HOLD = "hold"
ACTION_INSUFFICIENT = "insufficient_data"


@dataclass
class GateDecision:
    gates: Gates
    action: str
    win_rate: Optional[float] = None
    samples: int = 0

    def to_dict(self):
        return {
            "gates": self.gates.to_dict(),
            "action": self.action,
            "win_rate": round(self.win_rate, 4) if self.win_rate is not None else None,
            "samples": self.samples,
        }


def validate_band(floors: Gates, ceilings: Gates) -> None:
    for name in GATE_FIELDS:
        if getattr(floors, name) > getattr(ceilings, name):
            raise ValueError(f"gate floor exceeds ceiling for {name}")


def clamp_gates(gates: Gates, floors: Gates = GATE_FLOORS, ceilings: Gates = GATE_CEILINGS) -> Gates:
    clamped = Gates()
    for name in GATE_FIELDS:
        value = min(getattr(ceilings, name), max(getattr(floors, name), getattr(gates, name)))
        setattr(clamped, name, round(value, _ROUNDING[name]))
    return clamped


def primary_win_rate(
    slips: Iterable[SettledSlip],
    now: Optional[datetime] = None,
    window_days: int = WINDOW_DAYS,
) -> Tuple[Optional[float], int]:
    """(win rate, sample size) of decided primary-tier slips in the window."""
    now = now or utc_now()
    wins = total = 0
    for slip in slips:
        if slip.tier != TIER_PRIMARY or not slip.decided:
            continue
        days = age_days(slip.settled_at, now)
        if days is None or days > window_days:
            continue
        total += 1
        wins += int(slip.won)
    return (wins / total if total else None), total


def tune_gates(
    previous: Optional[Gates],
    win_rate: Optional[float],
    samples: int,
    floors: Gates = GATE_FLOORS,
    ceilings: Gates = GATE_CEILINGS,
    step: float = GATE_STEP,
    min_samples: int = MIN_SAMPLES,
) -> GateDecision:
    """One tuning step from the previous cycle's gates."""
    validate_band(floors, ceilings)
    if not 0 < step < 1:
        raise ValueError(f"gate step must be in (0, 1), got {step}")

    base = previous or Gates()
    if win_rate is None or samples < min_samples:
        action, factor = ACTION_INSUFFICIENT, 1.0
    elif win_rate > RELAX_WIN_RATE:
        action, factor = ACTION_RELAX, 1.0 - step
    elif win_rate < TIGHTEN_WIN_RATE:
        action, factor = ACTION_TIGHTEN, 1.0 + step
    else:
        action, factor = ACTION_HOLD, 1.0

    scaled = Gates(**{name: getattr(base, name) * factor for name in GATE_FIELDS})
    gates = clamp_gates(scaled, floors, ceilings)
    logger.info(
        "Gate tuner: %s (win_rate=%s, n=%d) edge=%.4f hit_rate=%.1f sharpe=%.4f composite=%.1f",
        action, "n/a" if win_rate is None else f"{win_rate:.2f}", samples,
        gates.min_edge, gates.min_hit_rate, gates.min_sharpe, gates.min_composite,
    )
    return GateDecision(gates=gates, action=action, win_rate=win_rate, samples=samples)
