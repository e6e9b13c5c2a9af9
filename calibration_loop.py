"""
Calibration Loop - Daily self-adjustment from settled history
=============================================================
Runs the calibration stages in order, each isolated:

    1. recency           recency-weighted hit rate per (category, side)
    2. regime            classify the slate, pick weight multipliers
    3. category_weights  Bayesian-smoothed weights, streaks, blocking
    4. correlation       co-win / co-loss rates of leg pairs
    5. tiers             best-performing leg count
    6. gates             nudge quality gates from primary win rate
    7. patterns          loss + matchup penalty tables

A failing stage is logged with its traceback, reported as success=False
with the error, and the remaining stages still run on whatever inputs they
have (a failed regime stage falls back to full_slate, failed gate tuning
keeps the previous gates). Adaptation score = successful / total * 100.

The pure cycle (run_calibration_cycle) takes history as arguments;
run_calibration() is the DB-backed wrapper the scheduler and API call.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

import database
from calibration import gate_tuner, recency
from calibration.correlation_miner import CorrelationReport, mine_correlations
from calibration.gate_tuner import GATE_CEILINGS, GATE_FLOORS, GATE_STEP, GateDecision, primary_win_rate, tune_gates
from calibration.recency import recency_hit_rates
from calibration.regime import (
    FULL_SLATE,
    FULL_SLATE_MIN_GAMES,
    FULL_SLATE_MIN_SPORTS,
    TRAILING_DAYS,
    RegimeReading,
    SlateContext,
    detect_regime,
)
from calibration.tier_optimizer import optimize_tiers
from category_weights import CategoryWeightState, rebuild_category_weights
from core.error_responses import ErrorCode
from core.slip_types import Gates, SettledLeg, SettledSlip
from core.structured_logging import cycle_scope
from core.time_et import ET, age_days, parse_timestamp, period_key, utc_now
from pattern_learning import mine_loss_patterns, mine_matchup_patterns
from services.notify_service import forward_summary

logger = logging.getLogger(__name__)

HISTORY_DAYS = 90

STAGES = ("recency", "regime", "category_weights", "correlation", "tiers", "gates", "patterns")


@dataclass
class CalibrationConfig:
    half_life_days: float = recency.HALF_LIFE_DAYS
    recency_window_days: int = recency.WINDOW_DAYS
    gate_window_days: int = gate_tuner.WINDOW_DAYS
    gate_floors: Gates = field(default_factory=lambda: GATE_FLOORS)
    gate_ceilings: Gates = field(default_factory=lambda: GATE_CEILINGS)
    gate_step: float = GATE_STEP
    history_days: int = HISTORY_DAYS


@dataclass
class CalibrationResult:
    """In-memory output of one cycle; valid even when the state write fails."""
    cycle_id: Optional[str]
    period: str
    regime: RegimeReading
    gate_decision: GateDecision
    weights: Optional[List[CategoryWeightState]] = None
    correlation: Optional[CorrelationReport] = None
    tier_recommendations: Dict[str, Any] = field(default_factory=dict)
    loss_patterns: Optional[List[Dict[str, Any]]] = None
    matchup_patterns: Optional[List[Dict[str, Any]]] = None
    stage_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    persisted: Optional[bool] = None

    @property
    def stages_ok(self) -> int:
        return sum(1 for r in self.stage_results.values() if r["success"])

    @property
    def adaptation_score(self) -> int:
        if not self.stage_results:
            return 0
        return round(self.stages_ok / len(self.stage_results) * 100)

    def state_row(self) -> Dict[str, Any]:
        """AdaptationState row shape (see database.save_adaptation_state)."""
        return {
            "cycle_id": self.cycle_id,
            "period": self.period,
            "regime": self.regime.regime,
            "regime_confidence": self.regime.confidence,
            "gate_overrides": self.gate_decision.gates.to_dict(),
            "correlation_matrix": self.correlation.pairs if self.correlation else [],
            "tier_recommendations": self.tier_recommendations,
            "stage_results": self.stage_results,
            "adaptation_score": self.adaptation_score,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.stages_ok == len(self.stage_results),
            "cycle_id": self.cycle_id,
            "period": self.period,
            "regime": self.regime.to_dict(),
            "gates": self.gate_decision.to_dict(),
            "stages_ok": self.stages_ok,
            "stages_total": len(self.stage_results),
            "adaptation_score": self.adaptation_score,
            "stage_results": self.stage_results,
            "persisted": self.persisted,
        }


def _run_stage(results: Dict[str, Dict[str, Any]], name: str, stage: Callable[[], Dict[str, Any]]) -> bool:
    start = time.time()
    try:
        details = stage()
        error = None
    except Exception as e:
        logger.exception("Calibration stage %s failed", name)
        details, error = {}, f"{type(e).__name__}: {e}"
    results[name] = {
        "success": error is None,
        "duration_ms": int((time.time() - start) * 1000),
        "details": details,
        "error": error,
        "code": ErrorCode.CALIBRATION_FAILED if error else None,
    }
    return error is None


def trailing_slate(
    slips: List[SettledSlip],
    now: Optional[datetime] = None,
    base: Optional[SlateContext] = None,
) -> SlateContext:
    """
    Fill the trailing win-rate inputs (and the ET month) into a slate context.

    Without a caller-supplied slate the game and sport counts are unknown;
    they are assumed to be a full slate so only the trailing win rate and the
    calendar can move the regime.
    """
    now = now or utc_now()
    if base is None:
        ctx = SlateContext(
            game_count=FULL_SLATE_MIN_GAMES,
            sport_count=FULL_SLATE_MIN_SPORTS,
            month=parse_timestamp(now).astimezone(ET).month,
        )
    else:
        ctx = replace(base, trailing_settled=0, trailing_wins=0)
    for slip in slips:
        days = age_days(slip.settled_at, now)
        if slip.decided and days is not None and days <= TRAILING_DAYS:
            ctx.trailing_settled += 1
            ctx.trailing_wins += int(slip.won)
    return ctx


def run_calibration_cycle(
    outcomes: List[SettledLeg],
    slips: List[SettledSlip],
    slate: Optional[SlateContext] = None,
    previous_gates: Optional[Gates] = None,
    previous_weights: Optional[List[CategoryWeightState]] = None,
    now: Optional[datetime] = None,
    config: Optional[CalibrationConfig] = None,
    cycle_id: Optional[str] = None,
) -> CalibrationResult:
    """
    One calibration cycle over in-memory history. Never raises for a stage
    failure; ValueError from a bad gate band surfaces as a failed gates stage.
    """
    config = config or CalibrationConfig()
    now = now or utc_now()
    outcomes = list(outcomes)
    slips = list(slips)

    result = CalibrationResult(
        cycle_id=cycle_id,
        period=period_key(now),
        regime=RegimeReading(regime=FULL_SLATE, confidence=50),
        gate_decision=GateDecision(gates=previous_gates or Gates(), action=gate_tuner.ACTION_HOLD),
    )
    recency_rates: Dict[Any, float] = {}

    def _recency() -> Dict[str, Any]:
        stats = recency_hit_rates(
            outcomes, now, half_life=config.half_life_days, window_days=config.recency_window_days,
        )
        recency_rates.update({k: s.hit_rate for k, s in stats.items() if s.hit_rate is not None})
        return {
            "keys": len(stats),
            "rates": {f"{cat}__{side}": round(rate, 4) for (cat, side), rate in sorted(recency_rates.items())},
        }

    def _regime() -> Dict[str, Any]:
        result.regime = detect_regime(trailing_slate(slips, now, slate))
        return result.regime.to_dict()

    def _category_weights() -> Dict[str, Any]:
        result.weights = rebuild_category_weights(
            outcomes, previous_weights, recency_rates, result.regime.regime,
        )
        return {
            "records": len(result.weights),
            "blocked": [f"{s.category}__{s.side}" for s in result.weights if s.is_blocked],
        }

    def _correlation() -> Dict[str, Any]:
        result.correlation = mine_correlations(slips, now)
        return {
            "slips_used": result.correlation.slips_used,
            "sufficient": result.correlation.sufficient,
            "pairs": len(result.correlation.pairs),
        }

    def _tiers() -> Dict[str, Any]:
        result.tier_recommendations = optimize_tiers(slips, now)
        return dict(result.tier_recommendations) or {"sufficient": False}

    def _gates() -> Dict[str, Any]:
        win_rate, samples = primary_win_rate(slips, now, config.gate_window_days)
        result.gate_decision = tune_gates(
            previous_gates, win_rate, samples,
            floors=config.gate_floors, ceilings=config.gate_ceilings, step=config.gate_step,
        )
        return result.gate_decision.to_dict()

    def _patterns() -> Dict[str, Any]:
        result.loss_patterns = mine_loss_patterns(slips)
        result.matchup_patterns = mine_matchup_patterns(outcomes)
        return {
            "loss_patterns": len(result.loss_patterns),
            "active_loss_patterns": sum(1 for r in result.loss_patterns if r["is_active"]),
            "matchup_patterns": len(result.matchup_patterns),
        }

    stages = {
        "recency": _recency,
        "regime": _regime,
        "category_weights": _category_weights,
        "correlation": _correlation,
        "tiers": _tiers,
        "gates": _gates,
        "patterns": _patterns,
    }
    for name in STAGES:
        _run_stage(result.stage_results, name, stages[name])

    logger.info(
        "Calibration cycle: %d/%d stages ok, regime=%s, gates=%s, score=%d",
        result.stages_ok, len(STAGES), result.regime.regime,
        result.gate_decision.action, result.adaptation_score,
    )
    return result


def previous_gates_from_state(state: Optional[Dict[str, Any]]) -> Optional[Gates]:
    if not state or not state.get("gate_overrides"):
        return None
    return Gates.from_dict(state["gate_overrides"])


def persist_calibration(result: CalibrationResult) -> bool:
    """Write weights, patterns and the AdaptationState row. False on failure."""
    try:
        with database.get_db() as db:
            if db is None:
                logger.warning("Calibration %s not persisted: database not available", result.cycle_id)
                return False
            if result.weights is not None:
                database.save_category_weights(result.weights, db=db)
            if result.loss_patterns is not None:
                database.save_loss_patterns(result.loss_patterns, db=db)
            if result.matchup_patterns is not None:
                database.save_matchup_patterns(result.matchup_patterns, db=db)
            database.save_adaptation_state(result.state_row(), db=db)
    except SQLAlchemyError:
        logger.exception(
            "Calibration %s not persisted (period=%s, regime=%s)",
            result.cycle_id, result.period, result.regime.regime,
        )
        return False
    return True


async def run_calibration(
    slate: Optional[SlateContext] = None,
    now: Optional[datetime] = None,
    config: Optional[CalibrationConfig] = None,
    notify: bool = True,
) -> Dict[str, Any]:
    """
    DB-backed calibration: load history, run the cycle, persist, notify.

    Returns the cycle summary dict (CalibrationResult.to_dict()).
    """
    config = config or CalibrationConfig()
    with cycle_scope("calibration") as cycle_id:
        outcomes = database.get_settled_leg_outcomes(days_back=config.history_days)
        slips = database.get_settled_slips(days_back=config.history_days)
        previous_state = database.get_latest_adaptation_state()
        previous_weights = database.load_category_weights()
        logger.info(
            "Calibration %s: %d settled legs, %d settled slips, previous state %s",
            cycle_id, len(outcomes), len(slips),
            previous_state["period"] if previous_state else "none",
        )

        result = run_calibration_cycle(
            outcomes, slips,
            slate=slate,
            previous_gates=previous_gates_from_state(previous_state),
            previous_weights=previous_weights,
            now=now,
            config=config,
            cycle_id=cycle_id,
        )
        result.persisted = persist_calibration(result)
        summary = result.to_dict()
        if notify:
            await forward_summary("calibration", summary)
        return summary
