"""
Pydantic models for API request/response validation.
Provides type safety, automatic validation, and OpenAPI documentation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# BASE RESPONSE MODEL
# ============================================================================

class APIResponse(BaseModel):
    """Standardized API response wrapper."""
    model_config = ConfigDict(extra="allow")

    status: str = "ok"
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


# ============================================================================
# SELECTION
# ============================================================================

class GenerateSlipsRequest(BaseModel):
    """Request body for POST /slips/generate."""
    force: bool = Field(default=False, description="Run even if slips already exist for today")
    replay: bool = Field(default=False, description="Rebuild the shape of the last winning slip")
    exclude_subjects: List[str] = Field(default_factory=list, description="Subjects to keep out of every slip")
    batches: Optional[Dict[str, List[Dict[str, Any]]]] = Field(
        None, description="Engine -> raw records; fetched from the configured feeds when omitted"
    )
    leg_count: Optional[int] = Field(None, ge=2, le=6, description="Legs per slip (default from config)")
    max_slips: Optional[int] = Field(None, ge=1, le=10, description="Slips to produce (default from config)")

    @field_validator("exclude_subjects")
    @classmethod
    def strip_subjects(cls, v):
        return [s.strip() for s in v if s and s.strip()]


class CycleCounts(BaseModel):
    candidates_in: int = 0
    skipped_malformed: int = 0
    candidates_filtered: int = 0
    combinations_enumerated: int = 0
    combinations_selected: int = 0


class SelectionSummary(APIResponse):
    """Cycle summary returned by POST /slips/generate."""
    success: bool
    reason: Optional[str] = None
    period: str
    skipped: bool = False
    counts: CycleCounts = Field(default_factory=CycleCounts)
    sources_unavailable: List[str] = Field(default_factory=list)
    slips: List[Dict[str, Any]] = Field(default_factory=list)
    persisted: bool = False


class SlipsForPeriodResponse(APIResponse):
    period: str
    count: int
    slips: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# CALIBRATION
# ============================================================================

class SlateContextRequest(BaseModel):
    """Live slate counts for regime detection (all optional)."""
    game_count: int = Field(default=0, ge=0, description="Games on today's slate")
    sport_count: int = Field(default=0, ge=0, description="Distinct sports active today")
    injury_out_count: int = Field(default=0, ge=0, description="Players listed OUT")
    month: Optional[int] = Field(None, ge=1, le=12, description="Calendar month (defaults to the ET month)")


class RunCalibrationRequest(BaseModel):
    """Request body for POST /calibration/run."""
    slate: Optional[SlateContextRequest] = Field(None, description="Slate context; assumed full slate when omitted")
    notify: bool = Field(default=True, description="Forward the summary to the webhook")


class UnblockCategoryRequest(BaseModel):
    category: str = Field(..., min_length=1, description="Normalized category, e.g. points")
    side: str = Field(..., min_length=1, description="OVER / UNDER / HOME / AWAY")
