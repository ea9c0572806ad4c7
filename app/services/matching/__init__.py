"""
Matching Engine Service Package

Provides feature extraction, signal scorers, scoring strategies, threshold
management and rationale builders for matching lost items to found items.
"""

from app.services.matching.features import extract_features, features_for, needs_analysis
from app.services.matching.signals import string_similarity, location_match
from app.services.matching.explainability import RationaleBuilder
from app.services.matching.thresholds import ThresholdManager, fallback_confidence
from app.services.matching.strategies import (
    Scorer,
    ScoreResult,
    FallbackScorer,
    FeatureOverlapScorer,
)

__all__ = [
    # Feature extraction
    "extract_features",
    "features_for",
    "needs_analysis",
    # Signal scorers
    "string_similarity",
    "location_match",
    # Explainability
    "RationaleBuilder",
    # Threshold management
    "ThresholdManager",
    "fallback_confidence",
    # Strategies
    "Scorer",
    "ScoreResult",
    "FallbackScorer",
    "FeatureOverlapScorer",
]
