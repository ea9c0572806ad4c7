"""
Document Models
"""

from app.models.item import (
    ItemCategory,
    ItemFeatures,
    ItemKind,
    Item,
    LostItem,
    FoundItem,
    LostItemStatus,
    FoundItemStatus,
)
from app.models.match import (
    Match,
    MatchStatus,
    MatchConfidence,
    ProductDetails,
    clamp_score,
)

__all__ = [
    "ItemCategory",
    "ItemFeatures",
    "ItemKind",
    "Item",
    "LostItem",
    "FoundItem",
    "LostItemStatus",
    "FoundItemStatus",
    "Match",
    "MatchStatus",
    "MatchConfidence",
    "ProductDetails",
    "clamp_score",
]
