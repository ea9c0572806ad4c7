"""
ThresholdManager for score thresholds and confidence tiers.

Two tier sets:
- Persisted Match confidence: high >= 80, medium >= 60 (see app.models.match)
- Fallback scorer narrative: high >= 70, medium >= 50, used only for the
  fallback scorer's own label and recommendation text
"""

from typing import Optional
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

FALLBACK_HIGH_SCORE = 70
FALLBACK_MEDIUM_SCORE = 50


def fallback_confidence(score: float) -> str:
    """Fallback scorer's narrative label"""
    if score >= FALLBACK_HIGH_SCORE:
        return "high"
    elif score >= FALLBACK_MEDIUM_SCORE:
        return "medium"
    return "low"


class ThresholdManager:
    """
    Minimum-score lookup for batch and discovery runs.

    Caller-supplied values win; otherwise the configured defaults apply.
    """

    DEFAULT_MIN_SCORE = 30
    DEFAULT_POTENTIAL_MIN_SCORE = 10

    def __init__(
        self,
        min_score: Optional[float] = None,
        potential_min_score: Optional[float] = None
    ):
        self.min_score = self._validated(
            min_score if min_score is not None else settings.match_min_score,
            self.DEFAULT_MIN_SCORE,
            "min_score"
        )
        self.potential_min_score = self._validated(
            potential_min_score if potential_min_score is not None else settings.potential_match_min_score,
            self.DEFAULT_POTENTIAL_MIN_SCORE,
            "potential_min_score"
        )

    @staticmethod
    def _validated(value: float, default: float, name: str) -> float:
        if 0 <= value <= 100:
            return float(value)
        logger.warning("threshold_out_of_range", threshold=name, value=value, fallback=default)
        return float(default)

    def get_min_score(self, override: Optional[float] = None) -> float:
        """Threshold at which batch runs persist a Match"""
        if override is None:
            return self.min_score
        return self._validated(override, self.min_score, "min_score")

    def get_potential_min_score(self, override: Optional[float] = None) -> float:
        """Threshold at which discovery runs report a candidate"""
        if override is None:
            return self.potential_min_score
        return self._validated(override, self.potential_min_score, "potential_min_score")
