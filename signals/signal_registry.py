"""
Signal Registry - Named extractors that turn raw engine scores into probabilities
=================================================================================

Each extractor reads one raw score field, maps it into a probability-like value
inside its own [low, high] range, and carries a reliability weight. The leg
estimator iterates the registry; adding a signal source means registering an
extractor, not touching estimator code.

Default extractors:
| name        | field            | mapping                 | range        | weight |
|-------------|------------------|-------------------------|--------------|--------|
| hit_rate    | hit_rate         | hr / 100                | [0.01, 0.99] | 1.5    |
| median_edge | edge_percentage  | 0.55 + e/100 * 0.20     | [0.55, 0.85] | 1.2    |
| sharp       | sharp_score      | 0.50 + s/100 * 0.25     | [0.50, 0.80] | 1.0    |
| matchup     | pvs_score        | 0.50 + s/100 * 0.30     | [0.50, 0.85] | 1.3    |
| fatigue     | fatigue_impact   | 0.50 + f/100 * 0.15     | [0.40, 0.75] | 0.5    |
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def _positive(value: float) -> bool:
    return value > 0


def _nonzero(value: float) -> bool:
    return value != 0


def _as_percent(value: float) -> float:
    """Accept 0.72 or 72 for a 72% hit rate."""
    return value * 100.0 if 0 < value <= 1.0 else value


@dataclass(frozen=True)
class SignalExtractor:
    """One reliability-weighted probability signal."""
    name: str
    field: str
    weight: float
    low: float
    high: float
    transform: Callable[[float], float]
    edge_fn: Optional[Callable[[float], float]] = None
    present: Callable[[float], bool] = _positive

    def read(self, scores: Dict[str, Any]) -> Optional[float]:
        """Raw numeric value from one engine's score dict, or None."""
        value = scores.get(self.field)
        if value is None or isinstance(value, bool):
            return None
        try:
            value = float(value)
        except (TypeError, ValueError):
            return None
        return value if self.present(value) else None

    def probability(self, value: float) -> float:
        return max(self.low, min(self.high, self.transform(value)))

    def extract(self, raw_scores: Dict[str, Dict[str, Any]], sources: List[str]) -> Optional[float]:
        """Probability from the first source (in contribution order) carrying the field."""
        for source in sources:
            value = self.read(raw_scores.get(source) or {})
            if value is not None:
                return self.probability(value)
        return None


class SignalRegistry:
    """Ordered collection of extractors."""

    def __init__(self, extractors: Optional[List[SignalExtractor]] = None):
        self._extractors: Dict[str, SignalExtractor] = {}
        for extractor in extractors or []:
            self.register(extractor)

    def register(self, extractor: SignalExtractor) -> None:
        if extractor.weight <= 0:
            raise ValueError(f"extractor {extractor.name} must have a positive weight")
        if not 0.0 < extractor.low <= extractor.high < 1.0:
            raise ValueError(
                f"extractor {extractor.name} range [{extractor.low}, {extractor.high}] must sit inside (0, 1)"
            )
        if extractor.name in self._extractors:
            logger.info("Replacing signal extractor %s", extractor.name)
        self._extractors[extractor.name] = extractor

    def unregister(self, name: str) -> None:
        self._extractors.pop(name, None)

    def get(self, name: str) -> Optional[SignalExtractor]:
        return self._extractors.get(name)

    def __iter__(self):
        return iter(list(self._extractors.values()))

    def __len__(self) -> int:
        return len(self._extractors)

    def collect(self, raw_scores: Dict[str, Dict[str, Any]], sources: List[str]) -> List[Tuple[str, float, float]]:
        """(name, probability, weight) for every signal present on a leg."""
        found = []
        for extractor in self:
            prob = extractor.extract(raw_scores, sources)
            if prob is not None:
                found.append((extractor.name, prob, extractor.weight))
        return found

    def explicit_edge(self, raw_scores: Dict[str, Dict[str, Any]], sources: List[str]) -> Optional[float]:
        """
        Edge supplied by a calibrated signal.

        Walks sources in contribution order; a source's explicit "edge" field
        wins, else the first extractor with an edge mapping whose field it
        carries.
        """
        for source in sources:
            scores = raw_scores.get(source) or {}
            explicit = scores.get("edge")
            if explicit is not None and not isinstance(explicit, bool):
                try:
                    return float(explicit)
                except (TypeError, ValueError):
                    logger.debug("Ignoring non-numeric edge %r from %s", explicit, source)
            for extractor in self:
                if extractor.edge_fn is None:
                    continue
                value = extractor.read(scores)
                if value is not None:
                    return extractor.edge_fn(value)
        return None


# ============================================
# DEFAULT EXTRACTORS
# ============================================

DEFAULT_EXTRACTORS = [
    SignalExtractor(
        name="hit_rate",
        field="hit_rate",
        weight=1.5,
        low=0.01,
        high=0.99,
        transform=lambda v: _as_percent(v) / 100.0,
        edge_fn=lambda v: (_as_percent(v) - 50.0) / 10.0,
    ),
    SignalExtractor(
        name="median_edge",
        field="edge_percentage",
        weight=1.2,
        low=0.55,
        high=0.85,
        transform=lambda v: 0.55 + (v / 100.0) * 0.2,
        edge_fn=lambda v: v,
    ),
    SignalExtractor(
        name="sharp",
        field="sharp_score",
        weight=1.0,
        low=0.5,
        high=0.80,
        transform=lambda v: 0.5 + (v / 100.0) * 0.25,
        edge_fn=lambda v: v / 20.0,
    ),
    SignalExtractor(
        name="matchup",
        field="pvs_score",
        weight=1.3,
        low=0.5,
        high=0.85,
        transform=lambda v: 0.5 + (v / 100.0) * 0.3,
        edge_fn=lambda v: (v - 50.0) / 10.0,
    ),
    SignalExtractor(
        name="fatigue",
        field="fatigue_impact",
        weight=0.5,
        low=0.4,
        high=0.75,
        transform=lambda v: 0.5 + (v / 100.0) * 0.15,
        present=_nonzero,
    ),
]

_default_registry: Optional[SignalRegistry] = None


def get_registry() -> SignalRegistry:
    """Process-wide default registry (built on first use)."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SignalRegistry(DEFAULT_EXTRACTORS)
    return _default_registry


def register_extractor(extractor: SignalExtractor) -> None:
    """Add or replace an extractor on the default registry."""
    get_registry().register(extractor)
