"""
SLIPS ROUTER - Selection and calibration endpoints

Endpoints:
    - POST /slips/generate               - Run a selection cycle now
    - GET  /slips/today                  - Slips persisted for the current ET period
    - GET  /slips/period/{period}        - Slips persisted for a given period (YYYY-MM-DD)
    - POST /calibration/run              - Run a calibration cycle now
    - GET  /calibration/latest           - Latest adaptation state
    - GET  /calibration/weights          - Category weight records
    - POST /calibration/weights/unblock  - Manually unblock a (category, side)

Selection refusal (insufficient quality) is a 200 with success=false and a
reason; domain errors raise SlipEngineError and are rendered by the
handler in main.py.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

import database
from calibration.regime import SlateContext
from calibration_loop import run_calibration
from core.error_responses import ErrorCode, InvalidParameterError, PersistenceError, SlipEngineError
from core.time_et import now_et, period_key
from models.api_models import (
    GenerateSlipsRequest,
    RunCalibrationRequest,
    SelectionSummary,
    SlipsForPeriodResponse,
    UnblockCategoryRequest,
)
from signals.category_correlation import normalize_category
from slip_pipeline import run_selection_cycle
from slip_selector import SelectorConfig
from utils.leg_normalizer import normalize_side

logger = logging.getLogger(__name__)

router = APIRouter(tags=["slips"])


# =============================================================================
# SELECTION
# =============================================================================

@router.post("/slips/generate", response_model=SelectionSummary)
async def generate_slips(request: GenerateSlipsRequest):
    """
    Run one selection cycle.

    Returns the cycle summary. When slips already exist for today and
    force is false the summary is {success: true, skipped: true}.
    """
    overrides = {}
    if request.leg_count is not None:
        overrides["leg_count"] = request.leg_count
    if request.max_slips is not None:
        overrides["max_slips"] = request.max_slips
    try:
        config = SelectorConfig(**overrides)
    except ValueError as e:
        raise InvalidParameterError(str(e), field="leg_count")

    return await run_selection_cycle(
        batches=request.batches,
        force=request.force,
        replay=request.replay,
        exclude_subjects=request.exclude_subjects,
        config=config,
    )


@router.get("/slips/today", response_model=SlipsForPeriodResponse)
async def slips_today():
    period = period_key()
    slips = database.get_slips_for_period(period)
    return {"period": period, "count": len(slips), "slips": slips}


@router.get("/slips/period/{period}", response_model=SlipsForPeriodResponse)
async def slips_for_period(period: str):
    try:
        datetime.strptime(period, "%Y-%m-%d")
    except ValueError:
        raise InvalidParameterError(f"period must be YYYY-MM-DD, got {period!r}", field="period")
    slips = database.get_slips_for_period(period)
    return {"period": period, "count": len(slips), "slips": slips}


# =============================================================================
# CALIBRATION
# =============================================================================

@router.post("/calibration/run")
async def calibration_run(request: Optional[RunCalibrationRequest] = None):
    """Run the calibration loop now. Stage failures are reported per stage."""
    request = request or RunCalibrationRequest()
    slate = None
    if request.slate is not None:
        slate = SlateContext(
            game_count=request.slate.game_count,
            sport_count=request.slate.sport_count,
            injury_out_count=request.slate.injury_out_count,
            month=request.slate.month or now_et().month,
        )
    return await run_calibration(slate=slate, notify=request.notify)


@router.get("/calibration/latest")
async def calibration_latest():
    state = database.get_latest_adaptation_state()
    if state is None:
        raise SlipEngineError("No calibration cycle has been recorded yet", code=ErrorCode.NOT_FOUND)
    return {"status": "ok", "state": state}


@router.get("/calibration/weights")
async def calibration_weights():
    states = database.load_category_weights()
    return {
        "status": "ok",
        "count": len(states),
        "blocked": sum(1 for s in states if s.is_blocked),
        "weights": [s.to_dict() for s in sorted(states, key=lambda s: s.key)],
    }


@router.post("/calibration/weights/unblock")
async def calibration_unblock(request: UnblockCategoryRequest):
    category = normalize_category(request.category)
    side = normalize_side(request.side)
    if not side:
        raise InvalidParameterError(f"unknown side {request.side!r}", field="side")

    if not database.DB_ENABLED:
        raise PersistenceError("Database is disabled; a manual unblock cannot be stored")
    try:
        row = database.unblock_category_record(category, side)
    except SQLAlchemyError:
        logger.exception("Unblock write failed for %s/%s", category, side)
        raise PersistenceError(f"Could not store unblock for {category}/{side}")
    if row is None:
        raise SlipEngineError(f"No weight record for {category}/{side}", field="category", code=ErrorCode.NOT_FOUND)
    logger.info("Category %s/%s unblocked manually", category, side)
    return {"status": "ok", "weight": row}
