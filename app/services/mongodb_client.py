"""
MongoDB Client Service
Reads lost/found items and persists matches and cached item features
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from pydantic import ValidationError
import structlog

from app.models.item import FoundItem, FoundItemStatus, Item, ItemFeatures, ItemKind, LostItem, LostItemStatus
from app.models.match import HIGH_CONFIDENCE_SCORE, MEDIUM_CONFIDENCE_SCORE, Match, MatchStatus, round_score
from app.services.exceptions import StoreUnavailableError
from app.services.monitoring.circuit_breakers import get_mongodb_breaker

logger = structlog.get_logger()

LOST_ITEMS = "lost_items"
FOUND_ITEMS = "found_items"
MATCHES = "matches"

# Items still in play for automatic matching
ACTIVE_LOST_STATUSES = (LostItemStatus.OPEN.value, LostItemStatus.CLAIMED.value)
ACTIVE_FOUND_STATUSES = (FoundItemStatus.AVAILABLE.value, FoundItemStatus.CLAIMED.value)


def _id_filter(item_id: str) -> Dict[str, Any]:
    """Match `_id` whether it was stored as an ObjectId or a plain string"""
    if ObjectId.is_valid(item_id):
        return {"_id": {"$in": [ObjectId(item_id), item_id]}}
    return {"_id": item_id}


def _ids_filter(item_ids: Iterable[str]) -> Dict[str, Any]:
    values: List[Any] = []
    for item_id in item_ids:
        values.append(item_id)
        if ObjectId.is_valid(item_id):
            values.append(ObjectId(item_id))
    return {"_id": {"$in": values}}


InvalidDocumentHandler = Callable[[Dict[str, Any], ValidationError], None]


def parse_item_documents(
    model: Type[Item],
    documents: Iterable[Dict[str, Any]],
    on_invalid: Optional[InvalidDocumentHandler] = None
) -> List[Item]:
    """
    Validate raw item documents, skipping the ones that do not fit the model.

    One bad document (over-long title, wrong field type) must not hide every
    other item from a run: it is logged and reported through on_invalid.
    """
    items = []
    for document in documents:
        try:
            items.append(model.from_document(document))
        except ValidationError as e:
            logger.warning("item_document_invalid",
                           model=model.__name__,
                           item_id=str(document.get("_id")),
                           errors=e.error_count())
            if on_invalid is not None:
                on_invalid(document, e)
    return items


class MongoDBService:
    """
    Service to interact with MongoDB for items and matches.

    Every database call goes through the MongoDB circuit breaker. Errors
    propagate as PyMongoError or CircuitBreakerError; callers decide whether
    a failure aborts one pair or the whole operation.
    """

    def __init__(self, mongodb_url: Optional[str] = None, mongodb_database: Optional[str] = None):
        """Store connection settings; the connection is opened on first use"""
        from app.config import settings

        self.client: Optional[MongoClient] = None
        self.db = None
        self.mongodb_url = mongodb_url if mongodb_url is not None else settings.mongodb_url
        self.mongodb_database = mongodb_database or settings.mongodb_database
        self._initialized = False

    def _lazy_init(self):
        if self._initialized:
            return

        self._initialized = True

        if not self.mongodb_url:
            logger.warning("mongodb_url_not_configured")
            return

        try:
            self.client = MongoClient(self.mongodb_url, serverSelectionTimeoutMS=10000)
            self.db = self.client[self.mongodb_database]
            # Test connection
            self.client.admin.command('ping')
            logger.info("mongodb_connected", database=self.mongodb_database)
        except PyMongoError as e:
            logger.error("mongodb_connection_failed", error=str(e))
            self.client = None
            self.db = None

    def is_available(self) -> bool:
        """Check if MongoDB is available"""
        self._lazy_init()
        return self.client is not None and self.db is not None

    def close(self):
        if self.client is not None:
            self.client.close()
            logger.info("mongodb_connection_closed")
        self.client = None
        self.db = None
        self._initialized = False

    def _collection(self, name: str):
        if not self.is_available():
            raise StoreUnavailableError("MongoDB is not configured or unreachable")
        return self.db[name]

    def _call(self, func, *args, **kwargs):
        return get_mongodb_breaker().call(func, *args, **kwargs)

    def ensure_indexes(self):
        """
        Create the indexes the matching engine relies on.

        The unique (lost_item_id, found_item_id) index is what makes
        insert_match_if_absent atomic across concurrent runs.
        """
        matches = self._collection(MATCHES)
        self._call(
            matches.create_index,
            [("lost_item_id", ASCENDING), ("found_item_id", ASCENDING)],
            unique=True,
            name="uniq_lost_found_pair"
        )
        self._call(matches.create_index, [("status", ASCENDING)], name="status")
        self._call(matches.create_index, [("score", DESCENDING)], name="score_desc")
        for name in (LOST_ITEMS, FOUND_ITEMS):
            self._call(self._collection(name).create_index, [("category", ASCENDING)], name="category")
        logger.info("mongodb_indexes_ensured")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_lost_item(self, item_id: str) -> Optional[LostItem]:
        document = self._call(self._collection(LOST_ITEMS).find_one, _id_filter(item_id))
        return LostItem.from_document(document) if document else None

    def get_found_item(self, item_id: str) -> Optional[FoundItem]:
        document = self._call(self._collection(FOUND_ITEMS).find_one, _id_filter(item_id))
        return FoundItem.from_document(document) if document else None

    def get_item(self, kind: ItemKind, item_id: str):
        if kind == ItemKind.LOST:
            return self.get_lost_item(item_id)
        return self.get_found_item(item_id)

    def _find_items(
        self,
        collection: str,
        categories: Optional[Sequence[str]],
        statuses: Optional[Sequence[str]],
        user_id: Optional[str],
        limit: Optional[int]
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if categories:
            query["category"] = {"$in": list(categories)}
        if statuses:
            query["status"] = {"$in": list(statuses)}
        if user_id:
            query["user_id"] = user_id

        def run():
            cursor = self._collection(collection).find(query).sort("created_at", DESCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

        return self._call(run)

    def find_lost_items(
        self,
        categories: Optional[Sequence[str]] = None,
        statuses: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
        on_invalid: Optional[InvalidDocumentHandler] = None
    ) -> List[LostItem]:
        documents = self._find_items(LOST_ITEMS, categories, statuses, user_id, limit)
        return parse_item_documents(LostItem, documents, on_invalid)

    def find_found_items(
        self,
        categories: Optional[Sequence[str]] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        on_invalid: Optional[InvalidDocumentHandler] = None
    ) -> List[FoundItem]:
        documents = self._find_items(FOUND_ITEMS, categories, statuses, None, limit)
        return parse_item_documents(FoundItem, documents, on_invalid)

    def save_item_features(self, kind: ItemKind, item_id: str, features: ItemFeatures) -> bool:
        """
        Write extracted features back onto the item document.

        Returns:
            True if the item exists
        """
        collection = LOST_ITEMS if kind == ItemKind.LOST else FOUND_ITEMS
        now = datetime.utcnow()
        result = self._call(
            self._collection(collection).update_one,
            _id_filter(item_id),
            {"$set": {
                "features": features.model_dump(),
                "features_computed_at": now,
                "updated_at": now,
            }}
        )
        logger.debug("item_features_saved", kind=kind.value, item_id=item_id, matched=result.matched_count)
        return result.matched_count > 0

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def find_match(self, lost_item_id: str, found_item_id: str) -> Optional[Match]:
        document = self._call(
            self._collection(MATCHES).find_one,
            {"lost_item_id": lost_item_id, "found_item_id": found_item_id}
        )
        return Match.from_document(document) if document else None

    def insert_match_if_absent(self, match: Match) -> Tuple[Match, bool]:
        """
        Atomically create a match unless the pair already has one.

        Returns:
            (stored match, created) where created is False when another
            writer got there first and the existing match is returned

        Raises:
            DuplicateKeyError: The pair's index entry exists but its match
                document could not be read back
        """
        now = datetime.utcnow()
        document = match.to_document()
        document["created_at"] = document.get("created_at") or now
        document["updated_at"] = now
        pair = {"lost_item_id": match.lost_item_id, "found_item_id": match.found_item_id}
        insert_fields = {key: value for key, value in document.items() if key not in pair}

        collection = self._collection(MATCHES)
        try:
            previous = self._call(
                collection.find_one_and_update,
                pair,
                {"$setOnInsert": insert_fields},
                upsert=True,
                return_document=ReturnDocument.BEFORE
            )
        except DuplicateKeyError:
            # Concurrent upsert on the same pair lost the race to the unique index
            previous = self._call(collection.find_one, pair)
            if previous is None:
                logger.error("match_duplicate_key_without_document", **pair)
                raise

        if previous is not None:
            logger.info("match_already_exists", **pair, match_id=str(previous["_id"]))
            return Match.from_document(previous), False

        logger.info("match_created", **pair, match_id=match.id, score=match.score)
        return Match.from_document({**document, **pair}), True

    def list_matches(
        self,
        status: Optional[MatchStatus] = None,
        skip: int = 0,
        limit: int = 20
    ) -> List[Match]:
        query = {"status": status.value} if status else {}

        def run():
            cursor = (
                self._collection(MATCHES)
                .find(query)
                .sort([("score", DESCENDING), ("created_at", DESCENDING)])
                .skip(skip)
                .limit(limit)
            )
            return list(cursor)

        return [Match.from_document(document) for document in self._call(run)]

    def count_matches(self, status: Optional[MatchStatus] = None) -> int:
        query = {"status": status.value} if status else {}
        return self._call(self._collection(MATCHES).count_documents, query)

    def update_match_status(
        self,
        match_ids: Sequence[str],
        status: MatchStatus,
        notes: Optional[str] = None
    ) -> int:
        """
        Set the review status on one or more matches.

        Returns:
            Number of matches found
        """
        changes: Dict[str, Any] = {"status": status.value, "updated_at": datetime.utcnow()}
        if notes is not None:
            changes["notes"] = notes

        result = self._call(
            self._collection(MATCHES).update_many,
            _ids_filter(match_ids),
            {"$set": changes}
        )
        logger.info("match_status_updated",
                    match_count=len(match_ids),
                    matched=result.matched_count,
                    status=status.value)
        return result.matched_count

    def average_match_score(self) -> float:
        """Mean score over every stored match, 0 when there are none"""
        rows = self._call(
            lambda: list(self._collection(MATCHES).aggregate([
                {"$match": {"score": {"$exists": True, "$ne": None}}},
                {"$group": {"_id": None, "average_score": {"$avg": "$score"}}},
            ]))
        )
        if not rows or rows[0].get("average_score") is None:
            return 0.0
        return float(rows[0]["average_score"])

    def match_stats(self) -> Dict[str, Any]:
        """Totals by status and by confidence tier, plus the average score"""
        matches = self._collection(MATCHES)

        status_rows = self._call(
            lambda: list(matches.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]))
        )
        by_status = {status.value: 0 for status in MatchStatus}
        for row in status_rows:
            if row["_id"] in by_status:
                by_status[row["_id"]] = row["count"]

        by_confidence = {
            "high": self._call(matches.count_documents, {"score": {"$gte": HIGH_CONFIDENCE_SCORE}}),
            "medium": self._call(matches.count_documents, {
                "score": {"$gte": MEDIUM_CONFIDENCE_SCORE, "$lt": HIGH_CONFIDENCE_SCORE}
            }),
            "low": self._call(matches.count_documents, {"score": {"$lt": MEDIUM_CONFIDENCE_SCORE}}),
        }

        return {
            "total_matches": self.count_matches(),
            "by_status": by_status,
            "by_confidence": by_confidence,
            "average_score": round_score(self.average_match_score()),
        }
