"""
Pydantic models for lost and found item documents
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class ItemCategory(str, Enum):
    """Fixed category vocabulary shared by lost and found reports"""
    ELECTRONICS = "Electronics"
    ACCESSORIES = "Accessories"
    CLOTHING = "Clothing"
    BOOKS = "Books"
    BAGS = "Bags"
    JEWELRY = "Jewelry"
    DOCUMENTS = "Documents"
    OTHER = "Other"


class LostItemStatus(str, Enum):
    OPEN = "open"
    CLAIMED = "claimed"
    RESOLVED = "resolved"
    RETURNED = "returned"


class FoundItemStatus(str, Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    ARCHIVED = "archived"
    RETURNED = "returned"


class ItemKind(str, Enum):
    LOST = "lost"
    FOUND = "found"


class ItemFeatures(BaseModel):
    """
    Keyword features derived from an item's text.

    Cached on the item document; `fingerprint` detects whether the
    text changed since the features were computed.
    """
    colors: List[str] = Field(default_factory=list)
    objects: List[str] = Field(default_factory=list)
    brands: List[str] = Field(default_factory=list)
    text_features: List[str] = Field(default_factory=list)
    condition: str = "unknown"
    estimated_value: str = "unknown"
    category_confidence: float = Field(0.0, ge=0, le=100)
    confidence_score: float = Field(0.0, ge=0, le=100)
    fingerprint: str = ""


class Item(BaseModel, ABC):
    """
    Fields common to lost and found reports.

    Category is kept as a plain string: scoring compares categories by
    exact string equality, and older documents may carry values outside
    the current vocabulary.
    """
    id: str = Field(..., alias="_id")
    title: str = Field("", max_length=100)
    description: str = Field("", max_length=500)
    category: str = ItemCategory.OTHER.value
    location: str = ""
    image: Optional[str] = None

    user_id: str = ""
    user_name: str = ""
    user_email: str = ""
    user_phone: str = ""

    features: Optional[ItemFeatures] = None
    features_computed_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        extra = "ignore"

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        # Mongo documents carry ObjectId identifiers
        return str(value)

    @field_validator(
        "title", "description", "location", "user_id", "user_name", "user_email", "user_phone",
        mode="before"
    )
    @classmethod
    def _blank_if_null(cls, value: Any) -> Any:
        # Reports saved without a field store null; treat it as empty text
        return "" if value is None else value

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> Any:
        return ItemCategory.OTHER.value if value is None else value

    @property
    @abstractmethod
    def kind(self) -> ItemKind:
        ...

    @property
    @abstractmethod
    def event_date(self) -> Optional[datetime]:
        """Date the item was lost or found"""

    @property
    def is_scorable(self) -> bool:
        """Items without both a title and a description cannot be compared"""
        return bool(self.title and self.title.strip() and self.description and self.description.strip())

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        return cls.model_validate(document)

    def summary(self) -> Dict[str, Any]:
        """Item fields exposed alongside discovery results"""
        return self.model_dump(
            mode="json",
            exclude={"features_computed_at", "created_at", "updated_at"}
        )


class LostItem(Item):
    date_lost: Optional[datetime] = None
    status: LostItemStatus = LostItemStatus.OPEN

    @property
    def kind(self) -> ItemKind:
        return ItemKind.LOST

    @property
    def event_date(self) -> Optional[datetime]:
        return self.date_lost


class FoundItem(Item):
    date_found: Optional[datetime] = None
    status: FoundItemStatus = FoundItemStatus.AVAILABLE

    @property
    def kind(self) -> ItemKind:
        return ItemKind.FOUND

    @property
    def event_date(self) -> Optional[datetime]:
        return self.date_found
