"""
Shared fixtures: an in-memory stand-in for MongoDBService and item factories.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ANTHROPIC_API_KEY", "")
os.environ.setdefault("MONGODB_URL", "")

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from pymongo.errors import PyMongoError

from app.models.item import FoundItem, ItemFeatures, ItemKind, LostItem
from app.models.match import HIGH_CONFIDENCE_SCORE, MEDIUM_CONFIDENCE_SCORE, Match, MatchStatus, round_score
from app.services.monitoring.circuit_breakers import reset_breakers
from app.services.mongodb_client import parse_item_documents

BASE_DATE = datetime(2025, 3, 10, 12, 0, 0)


class InMemoryStore:
    """
    Dict-backed store with the MongoDBService interface.

    failing_pairs: (lost_id, found_id) pairs whose match insert raises
    PyMongoError, for exercising per-pair failure handling.

    raw_lost / raw_found: stored documents that go through model
    validation on every read, like documents coming out of MongoDB.
    """

    def __init__(self, lost_items=(), found_items=(), available: bool = True):
        self.available = available
        self.lost: Dict[str, LostItem] = {item.id: item for item in lost_items}
        self.found: Dict[str, FoundItem] = {item.id: item for item in found_items}
        self.matches: Dict[Tuple[str, str], Match] = {}
        self.saved_features: List[Tuple[str, str]] = []
        self.failing_pairs: Set[Tuple[str, str]] = set()
        self.raw_lost: List[Dict[str, Any]] = []
        self.raw_found: List[Dict[str, Any]] = []
        self.find_match_calls = 0

    def is_available(self) -> bool:
        return self.available

    def ensure_indexes(self):
        pass

    def close(self):
        pass

    def get_lost_item(self, item_id: str) -> Optional[LostItem]:
        item = self.lost.get(item_id)
        return item.model_copy(deep=True) if item else None

    def get_found_item(self, item_id: str) -> Optional[FoundItem]:
        item = self.found.get(item_id)
        return item.model_copy(deep=True) if item else None

    def get_item(self, kind: ItemKind, item_id: str):
        return self.get_lost_item(item_id) if kind == ItemKind.LOST else self.get_found_item(item_id)

    @staticmethod
    def _select(items, categories=None, statuses=None, user_id=None, limit=None):
        selected = [
            item.model_copy(deep=True) for item in items
            if (not categories or item.category in categories)
            and (not statuses or item.status.value in statuses)
            and (not user_id or item.user_id == user_id)
        ]
        return selected[:limit] if limit else selected

    def find_lost_items(self, categories=None, statuses=None, user_id=None, limit=None,
                        on_invalid=None) -> List[LostItem]:
        items = list(self.lost.values()) + parse_item_documents(LostItem, self.raw_lost, on_invalid)
        return self._select(items, categories, statuses, user_id, limit)

    def find_found_items(self, categories=None, statuses=None, limit=None, on_invalid=None) -> List[FoundItem]:
        items = list(self.found.values()) + parse_item_documents(FoundItem, self.raw_found, on_invalid)
        return self._select(items, categories, statuses, None, limit)

    def save_item_features(self, kind: ItemKind, item_id: str, features: ItemFeatures) -> bool:
        items = self.lost if kind == ItemKind.LOST else self.found
        if item_id not in items:
            return False
        items[item_id].features = features
        items[item_id].features_computed_at = datetime.utcnow()
        self.saved_features.append((kind.value, item_id))
        return True

    def find_match(self, lost_item_id: str, found_item_id: str) -> Optional[Match]:
        self.find_match_calls += 1
        return self.matches.get((lost_item_id, found_item_id))

    def insert_match_if_absent(self, match: Match) -> Tuple[Match, bool]:
        pair = (match.lost_item_id, match.found_item_id)
        if pair in self.failing_pairs:
            raise PyMongoError("write failed")
        if pair in self.matches:
            return self.matches[pair], False
        stored = match.model_copy(update={"created_at": datetime.utcnow()})
        self.matches[pair] = stored
        return stored, True

    def _filtered(self, status: Optional[MatchStatus]) -> List[Match]:
        return [m for m in self.matches.values() if status is None or m.status == status]

    def list_matches(self, status=None, skip=0, limit=20) -> List[Match]:
        ordered = sorted(self._filtered(status), key=lambda m: m.score, reverse=True)
        return ordered[skip:skip + limit]

    def count_matches(self, status=None) -> int:
        return len(self._filtered(status))

    def update_match_status(self, match_ids, status: MatchStatus, notes=None) -> int:
        updated = 0
        for pair, match in list(self.matches.items()):
            if match.id in match_ids:
                changes = {"status": status}
                if notes is not None:
                    changes["notes"] = notes
                self.matches[pair] = match.model_copy(update=changes)
                updated += 1
        return updated

    def average_match_score(self) -> float:
        if not self.matches:
            return 0.0
        return sum(m.score for m in self.matches.values()) / len(self.matches)

    def match_stats(self) -> Dict:
        scores = [m.score for m in self.matches.values()]
        return {
            "total_matches": len(scores),
            "by_status": {s.value: self.count_matches(s) for s in MatchStatus},
            "by_confidence": {
                "high": sum(1 for s in scores if s >= HIGH_CONFIDENCE_SCORE),
                "medium": sum(1 for s in scores if MEDIUM_CONFIDENCE_SCORE <= s < HIGH_CONFIDENCE_SCORE),
                "low": sum(1 for s in scores if s < MEDIUM_CONFIDENCE_SCORE),
            },
            "average_score": round_score(self.average_match_score()),
        }

    def add_match(self, lost_item_id: str, found_item_id: str, score: float = 50,
                  status: MatchStatus = MatchStatus.PENDING, match_id: Optional[str] = None) -> Match:
        match = Match(
            _id=match_id or f"m-{lost_item_id}-{found_item_id}",
            lost_item_id=lost_item_id,
            found_item_id=found_item_id,
            score=score,
            status=status,
        )
        self.matches[(lost_item_id, found_item_id)] = match
        return match


def make_lost(item_id: str = "lost-1", **overrides) -> LostItem:
    fields = {
        "_id": item_id,
        "title": "Black iPhone 14 Pro",
        "description": "Black iPhone 14 Pro with a cracked screen protector and a blue case",
        "category": "Electronics",
        "location": "Library 2nd floor",
        "date_lost": BASE_DATE,
        "user_id": "owner-1",
        "user_name": "Alex Owner",
    }
    fields.update(overrides)
    return LostItem.model_validate(fields)


def make_found(item_id: str = "found-1", **overrides) -> FoundItem:
    fields = {
        "_id": item_id,
        "title": "iPhone found",
        "description": "Found a black iPhone with a blue case near the study desks",
        "category": "Electronics",
        "location": "Library 2nd floor",
        "date_found": BASE_DATE + timedelta(days=1),
        "user_id": "finder-1",
        "user_name": "Sam Finder",
    }
    fields.update(overrides)
    return FoundItem.model_validate(fields)


@pytest.fixture(autouse=True)
def fresh_breakers():
    """Circuit breaker state must not leak between tests."""
    reset_breakers()
    yield
    reset_breakers()


@pytest.fixture
def lost_item():
    return make_lost()


@pytest.fixture
def found_item():
    return make_found()


@pytest.fixture
def store(lost_item, found_item):
    return InMemoryStore([lost_item], [found_item])
