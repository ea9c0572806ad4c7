"""
Signal Scorer Functions

Provides the per-field comparisons used by the scorers: string similarity,
location proximity and date proximity.

Design decisions:
- String similarity is the normalized edit-distance ratio
  (len(longer) - distance) / len(longer), which is exactly RapidFuzz's
  Levenshtein.normalized_similarity with unit weights
- Strings are case-folded before comparison, nothing else is stripped
- Location proximity for the fallback scorer is exact or containment only;
  the feature-overlap comparison adds building / common-area heuristics
"""

import re
from datetime import datetime
from typing import Optional

from rapidfuzz.distance import Levenshtein

COMMON_AREAS = ("library", "cafeteria", "gym", "parking", "park", "hall", "building")

_BUILDING = re.compile(r"building\s*([a-z]|[0-9])", re.IGNORECASE)

SECONDS_PER_DAY = 60 * 60 * 24


def string_similarity(first: Optional[str], second: Optional[str]) -> float:
    """
    Normalized edit-distance ratio between two strings.

    Returns:
        1.0 for identical strings (including two empty strings),
        0.0 for equal-length strings with no character in place

    Example:
        >>> string_similarity("Wallet", "wallet")
        1.0
    """
    return Levenshtein.normalized_similarity(
        (first or "").casefold(),
        (second or "").casefold()
    )


def normalize_location(location: Optional[str]) -> str:
    return " ".join((location or "").lower().split())


def location_match(first: Optional[str], second: Optional[str]) -> str:
    """
    Classify how two free-text locations relate.

    Returns:
        "exact", "nearby" (one contains the other) or "none"
    """
    loc1 = normalize_location(first)
    loc2 = normalize_location(second)

    if not loc1 or not loc2:
        return "none"
    if loc1 == loc2:
        return "exact"
    if loc1 in loc2 or loc2 in loc1:
        return "nearby"
    return "none"


def building_name(location: str) -> str:
    found = _BUILDING.search(location)
    return found.group(0).lower() if found else ""


def is_location_proximate(first: Optional[str], second: Optional[str]) -> bool:
    """
    Campus proximity heuristic: same "building X" token or a shared common area.
    """
    if not first or not second:
        return False

    loc1 = first.lower()
    loc2 = second.lower()

    building1 = building_name(loc1)
    if building1 and building1 == building_name(loc2):
        return True

    return any(area in loc1 and area in loc2 for area in COMMON_AREAS)


def days_apart(first: Optional[datetime], second: Optional[datetime]) -> Optional[float]:
    """Absolute distance in days, or None when either date is missing"""
    if first is None or second is None:
        return None

    # Mixed naive/aware datetimes compare as wall-clock times
    if (first.tzinfo is None) != (second.tzinfo is None):
        first = first.replace(tzinfo=None)
        second = second.replace(tzinfo=None)

    return abs((first - second).total_seconds()) / SECONDS_PER_DAY
