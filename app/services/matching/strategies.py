"""
Scoring Strategy Implementations

Every scorer answers the same question - do this lost item and this found
item describe the same object - and returns a ScoreResult on a 0-100 scale.

- FallbackScorer: weighted field comparison, deterministic, never calls out.
  It is the correctness floor of the system and the terminal state of the
  AI-backed scorer.
- FeatureOverlapScorer: keyword feature overlap, used by discovery runs.
- The AI-backed scorers live in app.services.ai_scorer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from app.models.item import FoundItem, ItemFeatures, LostItem
from app.models.match import MatchConfidence, clamp_score, round_score
from app.services.matching.explainability import RationaleBuilder
from app.services.matching.features import features_for
from app.services.matching.signals import (
    days_apart,
    is_location_proximate,
    location_match,
    string_similarity,
)
from app.services.matching.thresholds import fallback_confidence

logger = structlog.get_logger(__name__)

# Fallback scorer weights (sum to 100 at full match)
CATEGORY_WEIGHT = 30
TITLE_WEIGHT = 25
TITLE_PARTIAL_WEIGHT = 15
DESCRIPTION_WEIGHT = 20
DESCRIPTION_PARTIAL_WEIGHT = 10
LOCATION_WEIGHT = 15
LOCATION_NEARBY_WEIGHT = 8
DATE_WEIGHT = 10
DATE_PARTIAL_WEIGHT = 5

TITLE_HIGH_RATIO = 0.7
TITLE_PARTIAL_RATIO = 0.4
DESCRIPTION_HIGH_RATIO = 0.6
DESCRIPTION_PARTIAL_RATIO = 0.3
CLOSE_DATE_DAYS = 7
SIMILAR_TIMEFRAME_DAYS = 30

# Feature-overlap weights
COLOR_OVERLAP_WEIGHT = 30
OBJECT_OVERLAP_WEIGHT = 25
BRAND_OVERLAP_WEIGHT = 20
FEATURE_CATEGORY_WEIGHT = 15
PROXIMITY_WEIGHT = 10


@dataclass
class ScoreResult:
    """Result of scoring one (lost, found) pair."""
    score: float  # 0 to 100
    similarities: List[str] = field(default_factory=list)
    differences: List[str] = field(default_factory=list)
    confidence: str = "medium"  # Scorer's own label, not the persisted tier
    product_details: Dict[str, Any] = field(default_factory=dict)
    recommendation: str = ""
    scored_by: str = "fallback"  # ai, fallback, features
    feature_confidence: Optional[float] = None  # Feature-overlap scorer only

    def __post_init__(self):
        self.score = clamp_score(self.score)

    @property
    def tier(self) -> MatchConfidence:
        """Persisted confidence tier derived from the score"""
        return MatchConfidence.from_score(self.score)


class Scorer(ABC):
    """Base class for pair scorers."""

    name: str = "scorer"

    @abstractmethod
    def score(self, lost_item: LostItem, found_item: FoundItem) -> ScoreResult:
        """
        Score how likely two items are the same physical object.

        Args:
            lost_item: Lost report
            found_item: Found report

        Returns:
            ScoreResult with score in [0, 100]
        """
        pass


class FallbackScorer(Scorer):
    """
    Weighted additive field comparison.

    | Signal      | Points                                   |
    |-------------|------------------------------------------|
    | Category    | 30 on exact equality                     |
    | Title       | 25 if ratio > 0.7, 15 if > 0.4           |
    | Description | 20 if ratio > 0.6, 10 if > 0.3           |
    | Location    | 15 exact, 8 if one contains the other    |
    | Date        | 10 within 7 days, 5 within 30 days       |
    """

    name = "fallback"

    def score(self, lost_item: LostItem, found_item: FoundItem) -> ScoreResult:
        score = 0
        similarities: List[str] = []
        differences: List[str] = []

        # Category (30)
        if lost_item.category == found_item.category:
            score += CATEGORY_WEIGHT
            similarities.append(f"Same category: {lost_item.category}")
        else:
            differences.append(f"Different categories: {lost_item.category} vs {found_item.category}")

        # Title (25 / 15)
        title_ratio = string_similarity(lost_item.title, found_item.title)
        if title_ratio > TITLE_HIGH_RATIO:
            score += TITLE_WEIGHT
            similarities.append("Similar titles")
        elif title_ratio > TITLE_PARTIAL_RATIO:
            score += TITLE_PARTIAL_WEIGHT
            similarities.append("Partially similar titles")
        else:
            differences.append("Different titles")

        # Description (20 / 10)
        description_ratio = string_similarity(lost_item.description, found_item.description)
        if description_ratio > DESCRIPTION_HIGH_RATIO:
            score += DESCRIPTION_WEIGHT
            similarities.append("Similar descriptions")
        elif description_ratio > DESCRIPTION_PARTIAL_RATIO:
            score += DESCRIPTION_PARTIAL_WEIGHT
            similarities.append("Partially similar descriptions")
        else:
            differences.append("Different descriptions")

        # Location (15 / 8)
        proximity = location_match(lost_item.location, found_item.location)
        if proximity == "exact":
            score += LOCATION_WEIGHT
            similarities.append("Same location")
        elif proximity == "nearby":
            score += LOCATION_NEARBY_WEIGHT
            similarities.append("Nearby locations")
        else:
            differences.append("Different locations")

        # Date (10 / 5), only when both dates are known
        days = days_apart(lost_item.date_lost, found_item.date_found)
        if days is not None:
            if days <= CLOSE_DATE_DAYS:
                score += DATE_WEIGHT
                similarities.append("Close dates")
            elif days <= SIMILAR_TIMEFRAME_DAYS:
                score += DATE_PARTIAL_WEIGHT
                similarities.append("Similar timeframe")
            else:
                differences.append("Different timeframes")

        logger.debug("fallback_score_details",
                     lost_item_id=lost_item.id,
                     found_item_id=found_item.id,
                     title_ratio=round(title_ratio, 4),
                     description_ratio=round(description_ratio, 4),
                     location=proximity,
                     days_apart=days,
                     score=score)

        return ScoreResult(
            score=score,
            similarities=similarities,
            differences=differences,
            confidence=fallback_confidence(score),
            product_details={
                "condition": "Assessed by algorithm",
                "unique_identifiers": [],
            },
            recommendation=RationaleBuilder.fallback_recommendation(score),
            scored_by=self.name,
        )


class FeatureOverlapScorer(Scorer):
    """
    Keyword feature overlap, the lighter text-only comparison used for
    discovery runs.

    Colors 30, object nouns 25, brands 20, category 15, campus proximity 10.
    """

    name = "features"

    def score(
        self,
        lost_item: LostItem,
        found_item: FoundItem,
        lost_features: Optional[ItemFeatures] = None,
        found_features: Optional[ItemFeatures] = None
    ) -> ScoreResult:
        lost_features = lost_features or lost_item.features or features_for(lost_item)
        found_features = found_features or found_item.features or features_for(found_item)

        score = 0
        matched: List[str] = []

        if set(lost_features.colors) & set(found_features.colors):
            score += COLOR_OVERLAP_WEIGHT
            matched.append("Similar colors")

        if set(lost_features.objects) & set(found_features.objects):
            score += OBJECT_OVERLAP_WEIGHT
            matched.append("Similar objects")

        if set(lost_features.brands) & set(found_features.brands):
            score += BRAND_OVERLAP_WEIGHT
            matched.append("Same brand")

        if lost_item.category == found_item.category:
            score += FEATURE_CATEGORY_WEIGHT
            matched.append("Same category")

        if is_location_proximate(lost_item.location, found_item.location):
            score += PROXIMITY_WEIGHT
            matched.append("Similar location")

        mean_item_confidence = (lost_features.confidence_score + found_features.confidence_score) / 2
        feature_confidence = round_score(min(100.0, score / 100 * mean_item_confidence))

        shared_colors = [c for c in lost_features.colors if c in found_features.colors]
        shared_brands = [b for b in lost_features.brands if b in found_features.brands]

        return ScoreResult(
            score=score,
            similarities=matched,
            differences=[],
            confidence=MatchConfidence.from_score(score).value,
            product_details={
                "brand": shared_brands[0] if shared_brands else None,
                "color": shared_colors[0] if shared_colors else None,
                "condition": lost_features.condition,
                "unique_identifiers": matched[:3],
            },
            recommendation=RationaleBuilder.feature_reasoning(matched, score),
            scored_by=self.name,
            feature_confidence=feature_confidence,
        )
