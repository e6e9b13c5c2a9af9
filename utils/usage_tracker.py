"""
Usage Tracker - Cross-slip exposure accounting for one selection run.

A UsageAccumulator is created per run and threaded through the selector,
so repeated or concurrent runs never share "already used" state.

Tracks:
- subject -> number of selected slips containing it (cap, default 2)
- subject -> the (category, side) leg it was selected with; a later slip
  may reuse the subject only with that same leg
- grouping key -> number of selected slips touching it (informational)
- excluded subjects (already used by earlier output in the same period)
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Optional, Tuple

from core.slip_types import CandidateLeg, Slip
from identity.name_normalizer import normalize_subject_name

logger = logging.getLogger(__name__)

MAX_SLIPS_PER_SUBJECT = 2


class UsageAccumulator:
    """Per-run exposure counters."""

    def __init__(
        self,
        max_slips_per_subject: int = MAX_SLIPS_PER_SUBJECT,
        exclude_subjects: Optional[Iterable[str]] = None,
    ):
        self.max_slips_per_subject = max_slips_per_subject
        self.subject_counts: Dict[str, int] = defaultdict(int)
        self.event_counts: Dict[str, int] = defaultdict(int)
        self.subject_legs: Dict[str, Tuple[str, str]] = {}
        self.excluded = {normalize_subject_name(s) for s in (exclude_subjects or []) if s}
        self.excluded.discard("")
        self.rejections: Dict[str, int] = defaultdict(int)

    def is_excluded(self, subject_key: str) -> bool:
        return subject_key in self.excluded

    def subject_available(self, subject_key: str) -> bool:
        """Subject may appear in one more selected slip."""
        if subject_key in self.excluded:
            return False
        return self.subject_counts[subject_key] < self.max_slips_per_subject

    def leg_available(self, leg: CandidateLeg) -> bool:
        """Subject is available and not already committed to a different leg."""
        if not self.subject_available(leg.subject_key):
            return False
        committed = self.subject_legs.get(leg.subject_key)
        return committed is None or committed == (leg.category_key, leg.side)

    def can_accept(self, slip: Slip) -> bool:
        for leg in slip.legs:
            subject = leg.subject_key
            if subject in self.excluded:
                self.rejections["excluded"] += 1
                return False
            if self.subject_counts[subject] >= self.max_slips_per_subject:
                self.rejections["subject_cap"] += 1
                return False
            committed = self.subject_legs.get(subject)
            if committed is not None and committed != (leg.category_key, leg.side):
                self.rejections["conflicting_leg"] += 1
                return False
        return True

    def record(self, slip: Slip) -> None:
        for leg in slip.legs:
            self.subject_counts[leg.subject_key] += 1
            self.subject_legs.setdefault(leg.subject_key, (leg.category_key, leg.side))
        for key in {leg.grouping_key for leg in slip.legs if leg.grouping_key}:
            self.event_counts[key] += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_slips_per_subject": self.max_slips_per_subject,
            "subjects": dict(self.subject_counts),
            "events": dict(self.event_counts),
            "excluded": sorted(self.excluded),
            "rejections": dict(self.rejections),
        }
