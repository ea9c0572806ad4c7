"""
Rationale Builder

Produces the one-sentence recommendation attached to every score.
Templates are canned and keyed by score band so the same score always
reads the same way.
"""

from typing import List


class RationaleBuilder:
    """Canned rationale templates for the deterministic scorers."""

    @staticmethod
    def fallback_recommendation(score: float) -> str:
        """Recommendation for the weighted field-comparison scorer"""
        if score >= 70:
            return "High confidence match - likely same item"
        elif score >= 50:
            return "Possible match - requires manual verification"
        elif score >= 30:
            return "Weak match - some details agree, review only alongside other evidence"
        return "Low confidence - unlikely to be same item"

    @staticmethod
    def feature_reasoning(features: List[str], score: float) -> str:
        """Reasoning for the keyword feature-overlap comparison"""
        if score >= 80:
            highlights = " and ".join(features[:2])
            return (
                f"Very high confidence match. Found {len(features)} matching features "
                f"including {highlights}."
            )
        elif score >= 60:
            return f"Good match with {len(features)} matching features. Consider reviewing this match."
        elif score >= 40:
            return "Possible match with some similar features. Manual review recommended."

        if features:
            return f"Low confidence match. Similar features: {', '.join(features)}"
        return "Low confidence match. No obvious similarities found."
