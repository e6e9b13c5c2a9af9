"""
Slip Pipeline - One selection cycle end to end
==============================================

    force guard -> feed fan-out -> aggregate -> estimate -> select -> stake
    -> persist -> notify

Inputs the selector reads from the last calibration cycle:
- category weights + blocked (category, side) pairs  (category_weights table)
- loss / matchup patterns                            (pattern tables)
- quality gates                                      (latest AdaptationState)

The cycle summary is the single output contract shared by the scheduler,
the HTTP route and the webhook:

    {success, reason, period, cycle_id, selection_status,
     counts: {candidates_in, skipped_malformed, candidates_filtered,
              combinations_enumerated, combinations_selected},
     sources_unavailable, slips, persisted}

Refusal (insufficient quality) is success=False with a reason. A failed
slip write is logged with context and reported as persisted=False; the
selected slips are still returned.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError

import database
from calibration_loop import previous_gates_from_state
from category_weights import blocked_keys, effective_weights
from core.slip_types import SlipOutcome
from core.structured_logging import cycle_scope
from core.time_et import period_key, utc_now
from env_config import Config
from leg_probability import estimate_candidates
from pick_aggregator import aggregate_candidates
from services.notify_service import forward_summary
from services.signal_feed_service import fetch_all_feeds
from signals.category_correlation import normalize_category
from slip_scorer import PatternBook
from slip_selector import SelectorConfig, select_slips
from tiering import TIER_PRIMARY, recommended_stake
from utils.leg_normalizer import normalize_side
from utils.usage_tracker import UsageAccumulator

logger = logging.getLogger(__name__)

REASON_ALREADY_GENERATED = "already_generated"
REPLAY_LOOKBACK_DAYS = 7


# ============================================
# CALIBRATION STATE
# ============================================

def load_selection_state() -> Dict[str, Any]:
    """Weights, blocked pairs, pattern book and gates for the selector."""
    states = database.load_category_weights()
    loss_rows, matchup_rows = database.load_patterns()
    latest = database.get_latest_adaptation_state()
    return {
        "weights": effective_weights(states),
        "blocked": blocked_keys(states),
        "patterns": PatternBook.from_records(loss_rows, matchup_rows),
        "gates": previous_gates_from_state(latest),
        "regime": latest["regime"] if latest else None,
    }


def _slip_pattern(legs: Iterable[Dict[str, Any]]) -> List[Tuple[str, str]]:
    return [
        (normalize_category(leg.get("category_key") or leg.get("category")), normalize_side(leg.get("side")))
        for leg in legs
    ]


def replay_template(period: str) -> Optional[List[Tuple[str, str]]]:
    """
    (category, side) slots to reproduce: the most recent winning slip, else
    the most recent primary slip from an earlier period.
    """
    won = [s for s in database.get_settled_slips(days_back=REPLAY_LOOKBACK_DAYS) if s.won]
    if won:
        latest = max(won, key=lambda s: s.settled_at)
        return _slip_pattern(latest.legs)
    for slip in database.get_recent_slips(days_back=REPLAY_LOOKBACK_DAYS):
        if slip["period"] != period and slip["tier"] == TIER_PRIMARY and slip["outcome"] != SlipOutcome.VOID.value:
            return _slip_pattern(slip["legs"])
    return None


def period_subjects(period: str) -> List[str]:
    """Subjects used by slips already persisted for the period."""
    subjects: List[str] = []
    for slip in database.get_slips_for_period(period):
        for leg in slip["legs"]:
            subject = leg.get("subject_key") or leg.get("subject")
            if subject and subject not in subjects:
                subjects.append(subject)
    return subjects


# ============================================
# CYCLE
# ============================================

def _summary(
    period: str,
    cycle_id: str,
    counts: Dict[str, int],
    unavailable: List[str],
    success: bool,
    reason: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    summary = {
        "success": success,
        "reason": reason,
        "period": period,
        "cycle_id": cycle_id,
        "counts": {
            "candidates_in": counts.get("candidates_in", 0),
            "skipped_malformed": counts.get("skipped_malformed", 0),
            "candidates_filtered": counts.get("candidates_filtered", 0),
            "combinations_enumerated": counts.get("combinations_enumerated", 0),
            "combinations_selected": counts.get("combinations_selected", 0),
        },
        "sources_unavailable": list(unavailable),
        "slips": [],
        "persisted": False,
    }
    summary.update(extra)
    return summary


def persist_slips(period: str, slips: List[Dict[str, Any]], cycle_id: str) -> bool:
    if not database.get_database_status()["enabled"]:
        logger.warning("Selection %s: %d slip(s) not persisted, database not available", cycle_id, len(slips))
        return False
    try:
        database.save_slips(period, slips, cycle_id)
    except SQLAlchemyError:
        logger.exception("Selection %s: failed to persist %d slip(s) for %s", cycle_id, len(slips), period)
        return False
    return True


async def run_selection_cycle(
    batches: Optional[Mapping[str, List[Dict[str, Any]]]] = None,
    force: bool = False,
    replay: bool = False,
    exclude_subjects: Optional[Iterable[str]] = None,
    config: Optional[SelectorConfig] = None,
    now: Optional[datetime] = None,
    client: Optional[httpx.AsyncClient] = None,
    notify: bool = True,
) -> Dict[str, Any]:
    """
    Run one selection cycle and return its summary.

    Args:
        batches: engine -> raw records; fetched from the configured feeds when None
        force: run even if slips already exist for the period (their subjects
               are then excluded so the new slips do not repeat them)
        replay: rebuild the shape of the last winning slip as the lead slip
        exclude_subjects: extra subjects to keep out of every slip
        config: selector settings
        now: cycle time (period key is its ET date)
        client: shared httpx client for the feed fan-out
        notify: forward the summary to the webhook
    """
    now = now or utc_now()
    period = period_key(now)
    config = config or SelectorConfig()

    with cycle_scope("selection") as cycle_id:
        already = database.has_slips_for_period(period)
        if already and not force:
            logger.info("Selection %s: slips already generated for %s, skipping", cycle_id, period)
            return {"success": True, "skipped": True, "reason": REASON_ALREADY_GENERATED, "period": period}

        excluded = list(exclude_subjects or [])
        if already:
            excluded.extend(period_subjects(period))

        unavailable: List[str] = []
        if batches is None:
            fan_out = await fetch_all_feeds(client=client)
            batches = fan_out.batches
            unavailable = fan_out.unavailable
            logger.info("Selection %s feed fan-out: %s", cycle_id, fan_out.to_dict())

        aggregation = aggregate_candidates(batches)
        counts: Dict[str, int] = {
            "candidates_in": aggregation.records_in,
            "skipped_malformed": aggregation.total_skipped,
        }
        logger.info(
            "Selection %s: %d record(s) from %d engine(s), %d candidate(s), %d malformed",
            cycle_id, aggregation.records_in, len(batches), len(aggregation.candidates),
            aggregation.total_skipped,
        )

        state = load_selection_state()
        estimated, _ = estimate_candidates(
            aggregation.candidates,
            category_weights=state["weights"],
            blocked=state["blocked"],
        )

        replay_pattern = replay_template(period) if replay else None
        if replay and replay_pattern is None:
            logger.info("Selection %s: replay requested but no template slip found", cycle_id)

        usage = UsageAccumulator(
            max_slips_per_subject=config.max_slips_per_subject,
            exclude_subjects=excluded,
        )
        result = select_slips(
            estimated,
            config=config,
            gates=state["gates"],
            patterns=state["patterns"],
            usage=usage,
            replay_pattern=replay_pattern,
            blocked=state["blocked"],
        )
        counts.update({k: v for k, v in result.counts.items() if k != "candidates_in"})

        summary = _summary(
            period, cycle_id, counts, unavailable,
            success=result.success,
            reason=result.reason,
            selection_status=result.status.value,
            probability_floor=result.probability_floor,
            trusted_rule_relaxed=result.trusted_rule_relaxed,
            regime=state["regime"],
        )

        if result.success:
            slips = []
            for slip in result.slips:
                row = slip.to_dict()
                row["stake_units"] = recommended_stake(
                    slip.combined_probability, slip.combined_price, slip.tier, Config.BANKROLL_UNITS,
                )
                slips.append(row)
            summary["slips"] = slips
            summary["persisted"] = persist_slips(period, slips, cycle_id)

        if notify:
            await forward_summary("selection", summary)
        return summary
