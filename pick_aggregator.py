"""
Pick Aggregator - Merge per-engine candidates into one leg per (subject, category)

Merge key = (normalized subject, normalized category). When a second engine
proposes the same key, the existing candidate is extended:
- the engine's tag joins `sources` (contribution order preserved)
- the engine's raw scores are attached under its own tag, never overwriting
  what an earlier engine supplied
- line / price / grouping key / sport / defense rank are back-filled only
  when the existing candidate has none

First-seen side wins. A later engine proposing the opposite side is still
attached (its scores stay under its tag) and counted as a side conflict.

No side effects beyond the returned result.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Tuple

from core.slip_types import CandidateLeg
from utils.leg_normalizer import normalize_engine_batch

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    """Merged candidates plus per-engine defect counts."""
    candidates: List[CandidateLeg] = field(default_factory=list)
    records_in: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)
    merged: int = 0
    side_conflicts: int = 0

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())

    def to_dict(self) -> Dict[str, int]:
        return {
            "records_in": self.records_in,
            "candidates": len(self.candidates),
            "skipped_malformed": self.total_skipped,
            "merged": self.merged,
            "side_conflicts": self.side_conflicts,
        }


def _merge_into(existing: CandidateLeg, incoming: CandidateLeg, engine: str) -> bool:
    """Extend `existing` with `incoming`'s engine data. Returns True on side conflict."""
    if engine not in existing.sources:
        existing.sources.append(engine)

    scores = existing.raw_scores.setdefault(engine, {})
    for key, value in incoming.raw_scores.get(engine, {}).items():
        scores.setdefault(key, value)

    if existing.line is None and incoming.line is not None:
        existing.line = incoming.line
    if existing.price is None and incoming.price is not None:
        existing.price = incoming.price
    if not existing.grouping_key and incoming.grouping_key:
        existing.grouping_key = incoming.grouping_key
    if existing.sport is None and incoming.sport is not None:
        existing.sport = incoming.sport
    if existing.defense_rank is None and incoming.defense_rank is not None:
        existing.defense_rank = incoming.defense_rank

    return existing.side != incoming.side


def aggregate_candidates(
    batches: Mapping[str, Iterable[dict]],
) -> AggregationResult:
    """
    Merge engine feeds into one candidate per (subject, category).

    Args:
        batches: engine tag -> raw records, iterated in the mapping's order
                 (that order decides which engine counts as a leg's primary source)

    Returns:
        AggregationResult with candidates in first-appearance order
    """
    result = AggregationResult()
    index: Dict[Tuple[str, str], CandidateLeg] = {}

    for engine, records in batches.items():
        records = list(records or [])
        result.records_in += len(records)
        legs, skipped = normalize_engine_batch(records, engine)
        result.skipped[engine] = skipped

        for leg in legs:
            existing = index.get(leg.merge_key)
            if existing is None:
                index[leg.merge_key] = leg
                result.candidates.append(leg)
                continue
            result.merged += 1
            if _merge_into(existing, leg, engine):
                result.side_conflicts += 1
                logger.debug(
                    "Side conflict on %s/%s: kept %s, %s proposed %s",
                    existing.subject_key, existing.category_key, existing.side, engine, leg.side,
                )

    for order, leg in enumerate(result.candidates):
        leg.order = order

    logger.info(
        "Aggregator: %d records -> %d candidates (merged=%d, skipped=%d, conflicts=%d)",
        result.records_in, len(result.candidates), result.merged,
        result.total_skipped, result.side_conflicts,
    )
    return result
