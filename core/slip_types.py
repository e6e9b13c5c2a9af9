"""
Slip engine types - shared records for selection and calibration.

CandidateLeg is built fresh each selection cycle and is only ever replaced
(dataclasses.replace), never edited once it sits inside a Slip. Slip is
frozen. Settled* records are the read-only history the calibration loop
consumes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Side(str, Enum):
    """Canonical leg directions."""
    OVER = "OVER"
    UNDER = "UNDER"
    HOME = "HOME"
    AWAY = "AWAY"
    YES = "YES"
    NO = "NO"


class MarketType(str, Enum):
    """Player-level vs team-level markets."""
    PLAYER_PROP = "player_prop"
    TEAM_BET = "team_bet"


class LegResult(str, Enum):
    """Settlement of a single leg."""
    HIT = "hit"
    MISS = "miss"
    PUSH = "push"


class SlipOutcome(str, Enum):
    """Settlement of a whole slip (written by the settlement collaborator)."""
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    VOID = "void"


class SelectionStatus(str, Enum):
    """Terminal states of one selection cycle."""
    PRODUCED = "produced"
    UNDERFILLED = "underfilled"
    INSUFFICIENT = "insufficient_quality"


# ============================================
# SELECTION RECORDS
# ============================================

@dataclass
class CandidateLeg:
    """A proposed single-outcome bet merged across source engines."""
    subject: str
    subject_key: str
    category: str
    category_key: str
    side: str
    line: Optional[float] = None
    price: Optional[int] = None
    grouping_key: str = ""
    sport: Optional[str] = None
    market_type: str = MarketType.PLAYER_PROP.value
    defense_rank: Optional[int] = None
    sources: List[str] = field(default_factory=list)
    raw_scores: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    probability: Optional[float] = None
    edge: float = 0.0
    volatility: float = 0.05
    order: int = 0

    @property
    def merge_key(self) -> Tuple[str, str]:
        return (self.subject_key, self.category_key)

    @property
    def primary_source(self) -> str:
        """First engine that produced this leg."""
        return self.sources[0] if self.sources else "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "subject_key": self.subject_key,
            "category": self.category,
            "category_key": self.category_key,
            "side": self.side,
            "line": self.line,
            "price": self.price,
            "grouping_key": self.grouping_key,
            "sport": self.sport,
            "market_type": self.market_type,
            "defense_rank": self.defense_rank,
            "sources": list(self.sources),
            "probability": round(self.probability, 4) if self.probability is not None else None,
            "edge": round(self.edge, 4),
            "volatility": self.volatility,
        }


@dataclass(frozen=True)
class Slip:
    """An immutable N-leg combination produced by the selector."""
    legs: Tuple[CandidateLeg, ...]
    combined_probability: float
    total_edge: float
    variance_penalty: float
    diversity_bonus: float
    pattern_penalty: float
    matchup_penalty: float
    score: float
    combined_price: int
    rank: int = 0
    tier: str = "alternate"
    replay: bool = False

    @property
    def subjects(self) -> Tuple[str, ...]:
        return tuple(leg.subject_key for leg in self.legs)

    @property
    def leg_count(self) -> int:
        return len(self.legs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "tier": self.tier,
            "leg_count": self.leg_count,
            "legs": [leg.to_dict() for leg in self.legs],
            "combined_probability": round(self.combined_probability, 6),
            "total_edge": round(self.total_edge, 4),
            "variance_penalty": round(self.variance_penalty, 4),
            "diversity_bonus": round(self.diversity_bonus, 4),
            "pattern_penalty": round(self.pattern_penalty, 4),
            "matchup_penalty": round(self.matchup_penalty, 4),
            "score": round(self.score, 6),
            "combined_price": self.combined_price,
            "replay": self.replay,
        }


@dataclass
class Gates:
    """Acceptance thresholds tuned by the calibration loop."""
    min_edge: float = 0.008
    min_hit_rate: float = 45.0
    min_sharpe: float = 0.01
    min_composite: float = 60.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "min_edge": self.min_edge,
            "min_hit_rate": self.min_hit_rate,
            "min_sharpe": self.min_sharpe,
            "min_composite": self.min_composite,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Gates":
        gates = cls()
        for key, value in (data or {}).items():
            if hasattr(gates, key) and value is not None:
                setattr(gates, key, float(value))
        return gates


@dataclass
class SelectionResult:
    """Outcome of one selection cycle. Refusal is success=False, never an exception."""
    success: bool
    status: SelectionStatus
    slips: List[Slip] = field(default_factory=list)
    reason: Optional[str] = None
    probability_floor: Optional[float] = None
    trusted_rule_relaxed: bool = False
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "reason": self.reason,
            "probability_floor": self.probability_floor,
            "trusted_rule_relaxed": self.trusted_rule_relaxed,
            "counts": dict(self.counts),
            "slips": [s.to_dict() for s in self.slips],
        }


# ============================================
# SETTLED HISTORY (calibration inputs)
# ============================================

@dataclass
class SettledLeg:
    """One settled leg outcome."""
    subject: str
    category: str
    side: str
    result: str
    settled_at: datetime
    line: Optional[float] = None
    sport: Optional[str] = None
    defense_rank: Optional[int] = None
    sources: List[str] = field(default_factory=list)

    @property
    def is_hit(self) -> bool:
        return self.result == LegResult.HIT.value

    @property
    def is_push(self) -> bool:
        return self.result == LegResult.PUSH.value


@dataclass
class SettledSlip:
    """One settled slip with the structure needed for pattern mining."""
    legs: List[Dict[str, Any]]
    outcome: str
    settled_at: datetime
    tier: str = "alternate"

    @property
    def leg_count(self) -> int:
        return len(self.legs)

    @property
    def won(self) -> bool:
        return self.outcome == SlipOutcome.WON.value

    @property
    def decided(self) -> bool:
        return self.outcome in (SlipOutcome.WON.value, SlipOutcome.LOST.value)
