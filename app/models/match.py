"""
Match model - one candidate correspondence between a lost and a found item
"""

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Persisted confidence tiers (score on 0-100 scale)
HIGH_CONFIDENCE_SCORE = 80
MEDIUM_CONFIDENCE_SCORE = 60


class MatchStatus(str, Enum):
    """Review lifecycle, owned by the review workflow after creation"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    RESOLVED = "resolved"


class MatchConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score: float) -> "MatchConfidence":
        if score >= HIGH_CONFIDENCE_SCORE:
            return cls.HIGH
        elif score >= MEDIUM_CONFIDENCE_SCORE:
            return cls.MEDIUM
        return cls.LOW


def clamp_score(score: float) -> float:
    score = float(score)
    if math.isnan(score):
        return 0.0
    return max(0.0, min(100.0, score))


def round_score(score: float) -> int:
    """Nearest whole score, halves rounded up (72.5 -> 73)"""
    return int(Decimal(str(score)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ProductDetails(BaseModel):
    """Best-effort guess at what the item is. Advisory only."""
    brand: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    condition: Optional[str] = None
    unique_identifiers: List[str] = Field(default_factory=list)

    class Config:
        extra = "ignore"


class Match(BaseModel):
    """
    A scored (lost item, found item) pair.

    `confidence` is not a field: it is always derived from `score`, so a
    stored or model-supplied confidence label can never disagree with it.
    """
    id: str = Field(..., alias="_id")
    lost_item_id: str
    found_item_id: str
    score: float
    similarities: List[str] = Field(default_factory=list)
    differences: List[str] = Field(default_factory=list)
    product_details: ProductDetails = Field(default_factory=ProductDetails)
    recommendation: str = ""
    status: MatchStatus = MatchStatus.PENDING
    lost_item_user_id: str = ""
    found_item_user_id: str = ""
    scored_by: str = "fallback"  # ai, fallback, features
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        extra = "ignore"

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_score(value)

    @property
    def confidence(self) -> MatchConfidence:
        return MatchConfidence.from_score(self.score)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Match":
        return cls.model_validate(document)

    def to_document(self) -> Dict[str, Any]:
        """MongoDB document (uses `_id`, stores the derived confidence for queries)"""
        document = self.model_dump(by_alias=True, mode="python")
        document["status"] = self.status.value
        document["confidence"] = self.confidence.value
        return document

    def to_response(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["confidence"] = self.confidence.value
        return data
