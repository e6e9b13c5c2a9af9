# database.py - SQLAlchemy persistence for slips, calibration state and settled history
# PostgreSQL when DATABASE_URL is set, SQLite fallback for local runs and tests

import hashlib
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from category_weights import CategoryWeightState, unblock_category
from core.slip_types import LegResult, SettledLeg, SettledSlip, SlipOutcome
from env_config import Config

logger = logging.getLogger("database")

LOCAL_DATABASE_URL = "sqlite:///./local.db"

# SQLAlchemy setup
Base = declarative_base()
engine = None
SessionLocal = None
DB_ENABLED = False
DB_TYPE = "none"


def _utcnow() -> datetime:
    """Naive UTC, the convention for every DateTime column here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def init_database(database_url: Optional[str] = None) -> bool:
    """
    Initialize database connection and create tables.

    Args:
        database_url: explicit URL (tests pass "sqlite://" for in-memory);
            defaults to Config.DATABASE_URL, then the local SQLite file
    """
    global engine, SessionLocal, DB_ENABLED, DB_TYPE

    db_url = database_url or Config.DATABASE_URL or LOCAL_DATABASE_URL
    # Hosted PostgreSQL URLs use postgres:// but SQLAlchemy needs postgresql://
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)

    try:
        if db_url.startswith("sqlite"):
            kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(db_url, **kwargs)
            DB_TYPE = "sqlite"
        else:
            engine = create_engine(db_url, pool_pre_ping=True, pool_size=5, max_overflow=10)
            DB_TYPE = "postgresql"
        logger.info("Database: using %s", DB_TYPE)

        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        Base.metadata.create_all(bind=engine)

        DB_ENABLED = True
        logger.info("Database initialized successfully")
        return True
    except SQLAlchemyError as e:
        logger.error("Database initialization failed: %s", e)
        DB_ENABLED = False
        return False


def close_database() -> None:
    global engine, SessionLocal, DB_ENABLED, DB_TYPE
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None
    DB_ENABLED = False
    DB_TYPE = "none"


@contextmanager
def get_db():
    """Get database session context manager (yields None when the DB is disabled)."""
    if not DB_ENABLED or SessionLocal is None:
        yield None
        return

    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_database_status() -> Dict[str, Any]:
    return {
        "enabled": DB_ENABLED,
        "configured": bool(Config.DATABASE_URL),
        "db_type": DB_TYPE,
    }


# ============================================================================
# DATABASE MODELS
# ============================================================================

class SlipRecord(Base):
    """
    One selected slip. slip_uid dedupes repeated writes of the same legs in
    the same period; outcome is written later by the settlement collaborator.
    """
    __tablename__ = "slips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slip_uid = Column(String(64), unique=True, nullable=False, index=True)
    period = Column(String(10), nullable=False, index=True)
    cycle_id = Column(String(64), nullable=True)

    rank = Column(Integer, nullable=False)
    tier = Column(String(20), nullable=False)
    leg_count = Column(Integer, nullable=False)
    legs_json = Column(Text, nullable=False)

    combined_probability = Column(Float, nullable=False)
    combined_price = Column(Integer, nullable=False)
    total_edge = Column(Float, default=0.0)
    score = Column(Float, nullable=False)
    breakdown_json = Column(Text, nullable=True)
    stake_units = Column(Float, default=0.0)
    replay = Column(Boolean, default=False)

    outcome = Column(String(10), default=SlipOutcome.PENDING.value, index=True)
    settled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)

    __table_args__ = (
        Index("ix_slips_period_rank", "period", "rank"),
        Index("ix_slips_outcome_settled", "outcome", "settled_at"),
    )

    @staticmethod
    def generate_slip_uid(period: str, legs: Iterable[Dict[str, Any]]) -> str:
        parts = sorted(
            f"{leg.get('subject_key') or leg.get('subject')}|{leg.get('category_key') or leg.get('category')}|{leg.get('side')}"
            for leg in legs
        )
        return hashlib.sha256(f"{period}|{'||'.join(parts)}".encode()).hexdigest()

    @property
    def legs(self) -> List[Dict[str, Any]]:
        return json.loads(self.legs_json) if self.legs_json else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slip_uid": self.slip_uid,
            "period": self.period,
            "cycle_id": self.cycle_id,
            "rank": self.rank,
            "tier": self.tier,
            "leg_count": self.leg_count,
            "legs": self.legs,
            "combined_probability": self.combined_probability,
            "combined_price": self.combined_price,
            "total_edge": self.total_edge,
            "score": self.score,
            "breakdown": json.loads(self.breakdown_json) if self.breakdown_json else {},
            "stake_units": self.stake_units,
            "replay": bool(self.replay),
            "outcome": self.outcome,
            "settled_at": _iso(self.settled_at),
            "created_at": _iso(self.created_at),
        }

    def to_settled(self) -> SettledSlip:
        return SettledSlip(legs=self.legs, outcome=self.outcome, settled_at=self.settled_at, tier=self.tier)


class CategoryWeight(Base):
    """Learned weight per (category, side)."""
    __tablename__ = "category_weights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category = Column(String(50), nullable=False)
    side = Column(String(10), nullable=False)
    weight = Column(Float, default=1.0)
    raw_hit_rate = Column(Float, nullable=True)
    recency_hit_rate = Column(Float, nullable=True)
    bayesian_hit_rate = Column(Float, nullable=True)
    total_picks = Column(Integer, default=0)
    hits = Column(Integer, default=0)
    misses = Column(Integer, default=0)
    current_streak = Column(Integer, default=0)
    best_streak = Column(Integer, default=0)
    worst_streak = Column(Integer, default=0)
    is_blocked = Column(Boolean, default=False, index=True)
    block_reason = Column(String(200), nullable=True)
    regime_multiplier = Column(Float, default=1.0)
    unblocked_at = Column(String(40), nullable=True)
    updated_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ux_category_weights_key", "category", "side", unique=True),
    )

    STATE_FIELDS = tuple(CategoryWeightState.__dataclass_fields__)

    def to_state(self) -> CategoryWeightState:
        return CategoryWeightState(**{name: getattr(self, name) for name in self.STATE_FIELDS})

    def apply_state(self, state: CategoryWeightState) -> None:
        for name in self.STATE_FIELDS:
            setattr(self, name, getattr(state, name))
        self.updated_at = _utcnow()

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_state().to_dict()
        data["updated_at"] = _iso(self.updated_at)
        return data


class LossPattern(Base):
    """Learned slip-structure penalty (engine concentration, category+side)."""
    __tablename__ = "loss_patterns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pattern_type = Column(String(40), nullable=False)
    pattern_key = Column(String(120), nullable=False)
    hits = Column(Integer, default=0)
    misses = Column(Integer, default=0)
    total_count = Column(Integer, default=0)
    accuracy_rate = Column(Float, default=0.0)
    penalty_amount = Column(Float, default=0.0)
    severity = Column(String(10), default="penalize")
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ux_loss_patterns_key", "pattern_type", "pattern_key", unique=True),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern_type": self.pattern_type,
            "pattern_key": self.pattern_key,
            "hits": self.hits,
            "misses": self.misses,
            "total_count": self.total_count,
            "accuracy_rate": self.accuracy_rate,
            "penalty_amount": self.penalty_amount,
            "severity": self.severity,
            "is_active": bool(self.is_active),
        }


class MatchupPattern(Base):
    """Learned category+side performance against an opponent defense tier."""
    __tablename__ = "matchup_patterns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sport = Column(String(10), nullable=False, default="")
    category = Column(String(50), nullable=False)
    side = Column(String(10), nullable=False)
    defense_tier = Column(String(10), nullable=False)
    hits = Column(Integer, default=0)
    misses = Column(Integer, default=0)
    total_count = Column(Integer, default=0)
    accuracy_rate = Column(Float, default=0.0)
    penalty_amount = Column(Float, default=0.0)
    is_boost = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ux_matchup_patterns_key", "sport", "category", "side", "defense_tier", unique=True),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sport": self.sport,
            "category": self.category,
            "side": self.side,
            "defense_tier": self.defense_tier,
            "hits": self.hits,
            "misses": self.misses,
            "total_count": self.total_count,
            "accuracy_rate": self.accuracy_rate,
            "penalty_amount": self.penalty_amount,
            "is_boost": bool(self.is_boost),
            "is_active": bool(self.is_active),
        }


class AdaptationState(Base):
    """Append-only: one row per calibration cycle. Readers take the newest row."""
    __tablename__ = "adaptation_state"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id = Column(String(64), nullable=True)
    period = Column(String(10), nullable=False, index=True)
    regime = Column(String(30), nullable=False)
    regime_confidence = Column(Integer, default=50)
    gate_overrides_json = Column(Text, nullable=False)
    correlation_matrix_json = Column(Text, nullable=True)
    tier_recommendations_json = Column(Text, nullable=True)
    stage_results_json = Column(Text, nullable=True)
    adaptation_score = Column(Integer, default=0)
    created_at = Column(DateTime, default=_utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cycle_id": self.cycle_id,
            "period": self.period,
            "regime": self.regime,
            "regime_confidence": self.regime_confidence,
            "gate_overrides": json.loads(self.gate_overrides_json) if self.gate_overrides_json else {},
            "correlation_matrix": json.loads(self.correlation_matrix_json) if self.correlation_matrix_json else [],
            "tier_recommendations": json.loads(self.tier_recommendations_json) if self.tier_recommendations_json else {},
            "stage_results": json.loads(self.stage_results_json) if self.stage_results_json else {},
            "adaptation_score": self.adaptation_score,
            "created_at": _iso(self.created_at),
        }


class SettledLegOutcome(Base):
    """Inbound settled leg history (calibration input)."""
    __tablename__ = "settled_leg_outcomes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slip_id = Column(Integer, nullable=True, index=True)
    subject = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False)
    side = Column(String(10), nullable=False)
    line = Column(Float, nullable=True)
    result = Column(String(10), nullable=False)
    sport = Column(String(10), nullable=True)
    defense_rank = Column(Integer, nullable=True)
    sources_json = Column(Text, nullable=True)
    settled_at = Column(DateTime, default=_utcnow, index=True)

    __table_args__ = (
        Index("ix_settled_legs_category_side", "category", "side"),
    )

    def to_settled_leg(self) -> SettledLeg:
        return SettledLeg(
            subject=self.subject,
            category=self.category,
            side=self.side,
            result=self.result,
            settled_at=self.settled_at,
            line=self.line,
            sport=self.sport,
            defense_rank=self.defense_rank,
            sources=json.loads(self.sources_json) if self.sources_json else [],
        )


# ============================================================================
# SLIPS
# ============================================================================

def save_slips(period: str, slips: List[Dict[str, Any]], cycle_id: Optional[str] = None, db: Session = None) -> int:
    """
    Persist selected slips (Slip.to_dict() shape plus "stake_units").

    Returns number of new rows (already-present slip_uids are skipped).
    Raises SQLAlchemyError when the write fails so the caller can report it.
    """
    if db is None:
        with get_db() as db:
            if db is None:
                logger.warning("Cannot save slips: database not available")
                return 0
            return _save_slips_impl(period, slips, cycle_id, db)
    return _save_slips_impl(period, slips, cycle_id, db)


def _save_slips_impl(period: str, slips: List[Dict[str, Any]], cycle_id: Optional[str], db: Session) -> int:
    inserted = 0
    for slip in slips:
        legs = slip.get("legs", [])
        slip_uid = SlipRecord.generate_slip_uid(period, legs)
        if db.query(SlipRecord).filter(SlipRecord.slip_uid == slip_uid).first() is not None:
            continue
        breakdown = {
            k: slip.get(k)
            for k in ("variance_penalty", "diversity_bonus", "pattern_penalty", "matchup_penalty")
        }
        db.add(SlipRecord(
            slip_uid=slip_uid,
            period=period,
            cycle_id=cycle_id,
            rank=slip.get("rank", 0),
            tier=slip.get("tier", "alternate"),
            leg_count=len(legs),
            legs_json=json.dumps(legs),
            combined_probability=slip.get("combined_probability", 0.0),
            combined_price=slip.get("combined_price", 0),
            total_edge=slip.get("total_edge", 0.0),
            score=slip.get("score", 0.0),
            breakdown_json=json.dumps(breakdown),
            stake_units=slip.get("stake_units", 0.0),
            replay=bool(slip.get("replay", False)),
        ))
        inserted += 1
    db.flush()
    logger.info("Saved %d slip(s) for %s", inserted, period)
    return inserted


def get_slips_for_period(period: str, db: Session = None) -> List[Dict[str, Any]]:
    if db is None:
        with get_db() as db:
            if db is None:
                return []
            return _get_slips_for_period_impl(period, db)
    return _get_slips_for_period_impl(period, db)


def _get_slips_for_period_impl(period: str, db: Session) -> List[Dict[str, Any]]:
    rows = db.query(SlipRecord).filter(SlipRecord.period == period).order_by(
        SlipRecord.created_at, SlipRecord.rank
    ).all()
    return [r.to_dict() for r in rows]


def has_slips_for_period(period: str, db: Session = None) -> bool:
    if db is None:
        with get_db() as db:
            if db is None:
                return False
            return db.query(SlipRecord.id).filter(SlipRecord.period == period).first() is not None
    return db.query(SlipRecord.id).filter(SlipRecord.period == period).first() is not None


def get_recent_slips(days_back: int = 3, db: Session = None) -> List[Dict[str, Any]]:
    """Most recent slips first (used to pick a replay template)."""
    if db is None:
        with get_db() as db:
            if db is None:
                return []
            return _get_recent_slips_impl(days_back, db)
    return _get_recent_slips_impl(days_back, db)


def _get_recent_slips_impl(days_back: int, db: Session) -> List[Dict[str, Any]]:
    cutoff = _utcnow() - timedelta(days=days_back)
    rows = db.query(SlipRecord).filter(SlipRecord.created_at >= cutoff).order_by(
        SlipRecord.created_at.desc(), SlipRecord.rank
    ).all()
    return [r.to_dict() for r in rows]


def settle_slip(
    slip_id: int,
    outcome: str,
    leg_results: Optional[List[str]] = None,
    settled_at: Optional[datetime] = None,
    db: Session = None,
) -> bool:
    """
    Settlement hook: write a slip outcome and, optionally, per-leg results
    (also recorded as SettledLegOutcome rows for calibration).
    """
    if db is None:
        with get_db() as db:
            if db is None:
                return False
            return _settle_slip_impl(slip_id, outcome, leg_results, settled_at, db)
    return _settle_slip_impl(slip_id, outcome, leg_results, settled_at, db)


def _settle_slip_impl(
    slip_id: int,
    outcome: str,
    leg_results: Optional[List[str]],
    settled_at: Optional[datetime],
    db: Session,
) -> bool:
    valid_outcomes = {o.value for o in SlipOutcome} - {SlipOutcome.PENDING.value}
    if outcome not in valid_outcomes:
        raise ValueError(f"outcome must be one of {sorted(valid_outcomes)}, got {outcome!r}")

    slip = db.query(SlipRecord).filter(SlipRecord.id == slip_id).first()
    if slip is None:
        return False

    when = _naive_utc(settled_at) or _utcnow()
    slip.outcome = outcome
    slip.settled_at = when

    if leg_results:
        legs = slip.legs
        if len(leg_results) != len(legs):
            raise ValueError(f"expected {len(legs)} leg results, got {len(leg_results)}")
        for leg, result in zip(legs, leg_results):
            leg["result"] = LegResult(result).value
            db.add(SettledLegOutcome(
                slip_id=slip.id,
                subject=leg.get("subject", ""),
                category=leg.get("category_key") or leg.get("category", ""),
                side=leg.get("side", ""),
                line=leg.get("line"),
                result=leg["result"],
                sport=leg.get("sport"),
                defense_rank=leg.get("defense_rank"),
                sources_json=json.dumps(leg.get("sources") or []),
                settled_at=when,
            ))
        slip.legs_json = json.dumps(legs)

    db.flush()
    return True


def get_settled_slips(days_back: int = 30, db: Session = None) -> List[SettledSlip]:
    if db is None:
        with get_db() as db:
            if db is None:
                return []
            return _get_settled_slips_impl(days_back, db)
    return _get_settled_slips_impl(days_back, db)


def _get_settled_slips_impl(days_back: int, db: Session) -> List[SettledSlip]:
    cutoff = _utcnow() - timedelta(days=days_back)
    rows = db.query(SlipRecord).filter(
        SlipRecord.outcome.in_([SlipOutcome.WON.value, SlipOutcome.LOST.value, SlipOutcome.VOID.value]),
        SlipRecord.settled_at >= cutoff,
    ).all()
    return [r.to_settled() for r in rows]


# ============================================================================
# SETTLED LEG HISTORY
# ============================================================================

def record_leg_outcome(outcome: Dict[str, Any], db: Session = None) -> bool:
    """Insert one settled leg (subject, category, side, result required)."""
    if db is None:
        with get_db() as db:
            if db is None:
                return False
            return _record_leg_outcome_impl(outcome, db)
    return _record_leg_outcome_impl(outcome, db)


def _record_leg_outcome_impl(outcome: Dict[str, Any], db: Session) -> bool:
    missing = [k for k in ("subject", "category", "side", "result") if not outcome.get(k)]
    if missing:
        logger.warning("Skipping settled leg without %s", ", ".join(missing))
        return False
    db.add(SettledLegOutcome(
        slip_id=outcome.get("slip_id"),
        subject=outcome["subject"],
        category=outcome["category"],
        side=outcome["side"],
        line=outcome.get("line"),
        result=LegResult(outcome["result"]).value,
        sport=outcome.get("sport"),
        defense_rank=outcome.get("defense_rank"),
        sources_json=json.dumps(outcome.get("sources") or []),
        settled_at=_naive_utc(outcome.get("settled_at")) or _utcnow(),
    ))
    db.flush()
    return True


def get_settled_leg_outcomes(days_back: Optional[int] = None, db: Session = None) -> List[SettledLeg]:
    """All settled legs, or only the last `days_back` days."""
    if db is None:
        with get_db() as db:
            if db is None:
                return []
            return _get_settled_leg_outcomes_impl(days_back, db)
    return _get_settled_leg_outcomes_impl(days_back, db)


def _get_settled_leg_outcomes_impl(days_back: Optional[int], db: Session) -> List[SettledLeg]:
    query = db.query(SettledLegOutcome)
    if days_back is not None:
        query = query.filter(SettledLegOutcome.settled_at >= _utcnow() - timedelta(days=days_back))
    return [r.to_settled_leg() for r in query.order_by(SettledLegOutcome.settled_at).all()]


# ============================================================================
# CATEGORY WEIGHTS
# ============================================================================

def load_category_weights(db: Session = None) -> List[CategoryWeightState]:
    if db is None:
        with get_db() as db:
            if db is None:
                return []
            return [r.to_state() for r in db.query(CategoryWeight).all()]
    return [r.to_state() for r in db.query(CategoryWeight).all()]


def save_category_weights(states: Iterable[CategoryWeightState], db: Session = None) -> bool:
    if db is None:
        with get_db() as db:
            if db is None:
                logger.warning("Cannot save category weights: database not available")
                return False
            return _save_category_weights_impl(states, db)
    return _save_category_weights_impl(states, db)


def _save_category_weights_impl(states: Iterable[CategoryWeightState], db: Session) -> bool:
    existing = {(r.category, r.side): r for r in db.query(CategoryWeight).all()}
    for state in states:
        row = existing.get(state.key)
        if row is None:
            row = CategoryWeight(category=state.category, side=state.side)
            db.add(row)
        row.apply_state(state)
    db.flush()
    return True


def unblock_category_record(category: str, side: str, db: Session = None) -> Optional[Dict[str, Any]]:
    """Manually unblock one (category, side). Returns the updated row or None if unknown."""
    if db is None:
        with get_db() as db:
            if db is None:
                return None
            return _unblock_category_impl(category, side, db)
    return _unblock_category_impl(category, side, db)


def _unblock_category_impl(category: str, side: str, db: Session) -> Optional[Dict[str, Any]]:
    row = db.query(CategoryWeight).filter(
        CategoryWeight.category == category, CategoryWeight.side == side
    ).first()
    if row is None:
        return None
    row.apply_state(unblock_category(row.to_state()))
    db.flush()
    return row.to_dict()


# ============================================================================
# LEARNED PATTERNS
# ============================================================================

def save_loss_patterns(rows: Iterable[Dict[str, Any]], db: Session = None) -> bool:
    if db is None:
        with get_db() as db:
            if db is None:
                return False
            return _save_loss_patterns_impl(rows, db)
    return _save_loss_patterns_impl(rows, db)


def _save_loss_patterns_impl(rows: Iterable[Dict[str, Any]], db: Session) -> bool:
    existing = {(r.pattern_type, r.pattern_key): r for r in db.query(LossPattern).all()}
    for data in rows:
        row = existing.get((data["pattern_type"], data["pattern_key"]))
        if row is None:
            row = LossPattern(pattern_type=data["pattern_type"], pattern_key=data["pattern_key"])
            db.add(row)
        for name in ("hits", "misses", "total_count", "accuracy_rate", "penalty_amount", "severity", "is_active"):
            setattr(row, name, data.get(name))
        row.updated_at = _utcnow()
    db.flush()
    return True


def save_matchup_patterns(rows: Iterable[Dict[str, Any]], db: Session = None) -> bool:
    if db is None:
        with get_db() as db:
            if db is None:
                return False
            return _save_matchup_patterns_impl(rows, db)
    return _save_matchup_patterns_impl(rows, db)


def _save_matchup_patterns_impl(rows: Iterable[Dict[str, Any]], db: Session) -> bool:
    existing = {
        (r.sport, r.category, r.side, r.defense_tier): r for r in db.query(MatchupPattern).all()
    }
    for data in rows:
        key = (data.get("sport") or "", data["category"], data["side"], data["defense_tier"])
        row = existing.get(key)
        if row is None:
            row = MatchupPattern(sport=key[0], category=key[1], side=key[2], defense_tier=key[3])
            db.add(row)
        for name in ("hits", "misses", "total_count", "accuracy_rate", "penalty_amount", "is_boost", "is_active"):
            setattr(row, name, data.get(name))
        row.updated_at = _utcnow()
    db.flush()
    return True


def load_patterns(db: Session = None) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """(loss pattern rows, matchup pattern rows) for PatternBook.from_records()."""
    if db is None:
        with get_db() as db:
            if db is None:
                return [], []
            return _load_patterns_impl(db)
    return _load_patterns_impl(db)


def _load_patterns_impl(db: Session) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    loss = [r.to_dict() for r in db.query(LossPattern).all()]
    matchup = [r.to_dict() for r in db.query(MatchupPattern).all()]
    return loss, matchup


# ============================================================================
# ADAPTATION STATE
# ============================================================================

def save_adaptation_state(state: Dict[str, Any], db: Session = None) -> bool:
    """Append one calibration cycle summary."""
    if db is None:
        with get_db() as db:
            if db is None:
                logger.warning("Cannot save adaptation state: database not available")
                return False
            return _save_adaptation_state_impl(state, db)
    return _save_adaptation_state_impl(state, db)


def _save_adaptation_state_impl(state: Dict[str, Any], db: Session) -> bool:
    db.add(AdaptationState(
        cycle_id=state.get("cycle_id"),
        period=state["period"],
        regime=state.get("regime", "full_slate"),
        regime_confidence=state.get("regime_confidence", 50),
        gate_overrides_json=json.dumps(state.get("gate_overrides") or {}),
        correlation_matrix_json=json.dumps(state.get("correlation_matrix") or []),
        tier_recommendations_json=json.dumps(state.get("tier_recommendations") or {}),
        stage_results_json=json.dumps(state.get("stage_results") or {}),
        adaptation_score=state.get("adaptation_score", 0),
    ))
    db.flush()
    return True


def get_latest_adaptation_state(db: Session = None) -> Optional[Dict[str, Any]]:
    if db is None:
        with get_db() as db:
            if db is None:
                return None
            return _get_latest_adaptation_state_impl(db)
    return _get_latest_adaptation_state_impl(db)


def _get_latest_adaptation_state_impl(db: Session) -> Optional[Dict[str, Any]]:
    row = db.query(AdaptationState).order_by(AdaptationState.id.desc()).first()
    return row.to_dict() if row else None
