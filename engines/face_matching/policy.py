"""
Match Policy — ordered acceptance rules for the best-ranked candidate.
All tunable thresholds live here.

Rules, evaluated in order (first satisfied wins):
    1. best < high_threshold                                  → high confidence
    2. best < medium_threshold                                → medium confidence
    3. two+ candidates, best < margin_threshold and
       second / best > margin_ratio                           → margin over runner-up
    otherwise                                                 → no match
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from engines.face_matching.gallery import Identity

logger = logging.getLogger(__name__)

CONFIDENCE_HIGH = 'high'
CONFIDENCE_MEDIUM = 'medium'
CONFIDENCE_MARGIN = 'margin'

SOURCE_CACHE = 'cache'
SOURCE_FRESH = 'fresh'


@dataclass(frozen=True)
class MatchCandidate:
    """One gallery identity scored against the probe."""
    identity: Identity
    distance: float
    source: str = SOURCE_CACHE
    position: int = 0  # index in the gallery, used to order equal distances

    def to_dict(self) -> dict:
        return {
            'key': self.identity.key,
            'name': self.identity.name,
            'distance': round(self.distance, 4),
            'source': self.source,
        }


@dataclass(frozen=True)
class Decision:
    """An accepted candidate and the rule that accepted it."""
    candidate: MatchCandidate
    confidence: str
    ratio: Optional[float] = None


@dataclass
class MatchPolicy:
    """
    Distance thresholds for accepting a match.
    Tuned for 128-d dlib descriptors; lower distance = more similar.
    """

    high_threshold: float = 0.45    # very strict, high confidence
    medium_threshold: float = 0.55  # medium confidence
    margin_threshold: float = 0.6   # weaker score accepted only with a clear margin
    margin_ratio: float = 1.2       # second-best / best must exceed this

    def decide(self, ranked: Sequence[MatchCandidate]) -> Optional[Decision]:
        """
        Apply the acceptance rules to candidates sorted by ascending distance.

        Returns:
            Decision for the best candidate, or None when no rule accepts it.
        """
        if not ranked:
            return None

        best = ranked[0]
        if best.distance < self.high_threshold:
            return Decision(best, CONFIDENCE_HIGH)
        if best.distance < self.medium_threshold:
            return Decision(best, CONFIDENCE_MEDIUM)

        if len(ranked) >= 2:
            second = ranked[1]
            ratio = second.distance / best.distance if best.distance > 0 else float('inf')
            if best.distance < self.margin_threshold and ratio > self.margin_ratio:
                return Decision(best, CONFIDENCE_MARGIN, ratio=ratio)
            logger.info(
                f"No confident match found. Best: {best.distance:.4f}, "
                f"second best: {second.distance:.4f}, ratio: {ratio:.2f}"
            )

        return None

    def to_dict(self) -> dict:
        return {
            'high_threshold': self.high_threshold,
            'medium_threshold': self.medium_threshold,
            'margin_threshold': self.margin_threshold,
            'margin_ratio': self.margin_ratio,
        }
