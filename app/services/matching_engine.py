"""
Matching Engine

Batch orchestration over lost x found item pairs:
- score_single: score one pair on demand, reusing an existing match
- run_batch: score every eligible pair with the AI scorer facade and
  persist matches at or above the minimum score
- discover_potential: non-persisting pass with the feature-overlap scorer
  and a lower threshold, annotated with prior review decisions
- analyze_item: compute and store one item's features

Pairs are always (lost, found). Same-reporter pairs and an item paired with
itself are never scored.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError
import structlog

from app.config import settings
from app.models.item import FoundItem, Item, ItemFeatures, ItemKind, LostItem
from app.models.match import Match, MatchConfidence, MatchStatus, round_score
from app.services.deduplicator import MatchDeduplicator
from app.services.exceptions import (
    EmptyItemSetError,
    ItemNotFoundError,
    ItemNotScorableError,
    StoreUnavailableError,
)
from app.services.matching import FeatureOverlapScorer, Scorer, ScoreResult, ThresholdManager
from app.services.matching.features import cached_or_fresh, features_for
from app.services.mongodb_client import ACTIVE_FOUND_STATUSES, ACTIVE_LOST_STATUSES
from app.services.monitoring.circuit_breakers import CircuitBreakerError

logger = structlog.get_logger(__name__)

PERSISTENCE_ERRORS = (PyMongoError, CircuitBreakerError)

TOP_MATCHES_PREVIEW = 10
POTENTIAL_STATUS = "potential"


@dataclass
class BatchRunStats:
    """Statistics returned by a batch run."""
    total_analyzed: int = 0
    matches_created: int = 0
    high_confidence_matches: int = 0
    average_score: int = 0  # Across every stored match, not just this run
    total_matches: int = 0
    pairs_scored: int = 0
    pairs_skipped_existing: int = 0
    pairs_failed: int = 0
    items_skipped: int = 0
    top_matches: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PotentialMatch:
    """One discovery candidate. Never persisted."""
    lost_item: LostItem
    found_item: FoundItem
    score: float
    similarities: List[str]
    rationale: str
    confidence: MatchConfidence
    feature_confidence: Optional[float] = None
    existing_status: str = POTENTIAL_STATUS
    existing_match_id: Optional[str] = None

    @property
    def is_existing(self) -> bool:
        return self.existing_match_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lost_item": self.lost_item.summary(),
            "found_item": self.found_item.summary(),
            "score": self.score,
            "similarities": self.similarities,
            "rationale": self.rationale,
            "confidence": self.confidence.value,
            "feature_confidence": self.feature_confidence,
            "existing_status": self.existing_status,
            "existing_match_id": self.existing_match_id,
            "is_existing": self.is_existing,
        }


@dataclass
class DiscoveryResult:
    """Ranked discovery candidates plus a per-tier summary."""
    matches: List[PotentialMatch] = field(default_factory=list)
    total_analyzed: int = 0
    pairs_failed: int = 0
    items_skipped: int = 0

    @property
    def summary(self) -> Dict[str, int]:
        tiers = [m.confidence for m in self.matches]
        return {
            "total_analyzed": self.total_analyzed,
            "total_potential_matches": len(self.matches),
            "high_confidence": tiers.count(MatchConfidence.HIGH),
            "medium_confidence": tiers.count(MatchConfidence.MEDIUM),
            "low_confidence": tiers.count(MatchConfidence.LOW),
            "existing_matches": sum(1 for m in self.matches if m.is_existing),
            "new_potential": sum(1 for m in self.matches if not m.is_existing),
            "pairs_failed": self.pairs_failed,
            "items_skipped": self.items_skipped,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"summary": self.summary, "matches": [m.to_dict() for m in self.matches]}


def is_excluded_pair(lost_item: LostItem, found_item: FoundItem) -> bool:
    """Self pairs and pairs reported by the same user are never scored"""
    if lost_item.id == found_item.id:
        return True
    return bool(lost_item.user_id) and lost_item.user_id == found_item.user_id


def _filter_items(items: Iterable[Item], categories: Optional[Sequence[str]], user_id: Optional[str] = None):
    selected = []
    for item in items:
        if categories and item.category not in categories:
            continue
        if user_id and item.user_id != user_id:
            continue
        selected.append(item)
    return selected


class MatchingEngine:
    """
    Orchestrates pair scoring across the lost and found item sets.

    Usage:
        engine = MatchingEngine(store, build_scorer())
        stats = engine.run_batch(min_score=30)
        print(stats.matches_created, stats.average_score)

        discovery = engine.discover_potential(min_score=10, categories=["Electronics"])
        for candidate in discovery.matches:
            print(candidate.score, candidate.existing_status)
    """

    def __init__(
        self,
        store,
        scorer: Scorer,
        discovery_scorer: Optional[FeatureOverlapScorer] = None,
        thresholds: Optional[ThresholdManager] = None,
        max_workers: Optional[int] = None
    ):
        """
        Initialize matching engine.

        Args:
            store: MongoDBService (or any object with the same methods)
            scorer: Pair scorer for batch and single scoring (AI facade or fallback)
            discovery_scorer: Scorer for discovery runs (default: FeatureOverlapScorer)
            thresholds: Minimum-score lookup (default: configured thresholds)
            max_workers: Parallel scoring threads per run (default: batch_max_workers)
        """
        self.store = store
        self.scorer = scorer
        self.discovery_scorer = discovery_scorer or FeatureOverlapScorer()
        self.thresholds = thresholds or ThresholdManager()
        self.deduplicator = MatchDeduplicator(store)
        self.max_workers = max(1, max_workers if max_workers is not None else settings.batch_max_workers)

        logger.info("matching_engine_initialized",
                    scorer=type(self.scorer).__name__,
                    discovery_scorer=type(self.discovery_scorer).__name__,
                    max_workers=self.max_workers)

    def _require_store(self):
        if not self.store.is_available():
            raise StoreUnavailableError("Matching requires a reachable MongoDB")

    # ------------------------------------------------------------------
    # Single pair
    # ------------------------------------------------------------------

    def score_single(self, lost_item_id: str, found_item_id: str) -> Tuple[Match, bool]:
        """
        Score one pair by ids and persist the result.

        Returns:
            (match, created); created is False when the pair already had a
            match, which is returned unchanged without re-scoring

        Raises:
            ItemNotFoundError: Either item does not exist
            ItemNotScorableError: Either item lacks a title or description
        """
        self._require_store()
        log = logger.bind(lost_item_id=lost_item_id, found_item_id=found_item_id)

        lost_item = self.store.get_lost_item(lost_item_id)
        if lost_item is None:
            raise ItemNotFoundError(ItemKind.LOST.value, lost_item_id)
        found_item = self.store.get_found_item(found_item_id)
        if found_item is None:
            raise ItemNotFoundError(ItemKind.FOUND.value, found_item_id)

        for item in (lost_item, found_item):
            if not item.is_scorable:
                raise ItemNotScorableError(item.kind.value, item.id)

        already_scored, existing = self.deduplicator.check(lost_item.id, found_item.id)
        if already_scored:
            log.info("single_match_exists", match_id=existing.id, status=existing.status.value)
            return existing, False

        result = self.scorer.score(lost_item, found_item)
        match, created = self.store.insert_match_if_absent(self._build_match(lost_item, found_item, result))

        log.info("single_match_scored",
                 score=result.score,
                 scored_by=result.scored_by,
                 created=created)
        return match, created

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run_batch(
        self,
        lost_items: Optional[List[LostItem]] = None,
        found_items: Optional[List[FoundItem]] = None,
        min_score: Optional[float] = None,
        categories: Optional[Sequence[str]] = None
    ) -> BatchRunStats:
        """
        Score every eligible (lost, found) pair and persist qualifying matches.

        Item sets default to the active items in the store. Re-running is
        cheap: pairs that already have a match are skipped before scoring.

        Raises:
            EmptyItemSetError: Either item set is empty after filtering
            StoreUnavailableError: No persistence backend
        """
        self._require_store()
        threshold = self.thresholds.get_min_score(min_score)
        stats = BatchRunStats()

        def skip_invalid(document, error):
            stats.items_skipped += 1

        if lost_items is None:
            lost_items = self.store.find_lost_items(
                categories=categories, statuses=ACTIVE_LOST_STATUSES, on_invalid=skip_invalid
            )
        else:
            lost_items = _filter_items(lost_items, categories)
        if found_items is None:
            found_items = self.store.find_found_items(
                categories=categories, statuses=ACTIVE_FOUND_STATUSES, on_invalid=skip_invalid
            )
        else:
            found_items = _filter_items(found_items, categories)

        if not lost_items or not found_items:
            logger.warning("batch_rejected_empty_item_set",
                           lost_count=len(lost_items),
                           found_count=len(found_items))
            raise EmptyItemSetError(len(lost_items), len(found_items))

        log = logger.bind(lost_count=len(lost_items), found_count=len(found_items), min_score=threshold)
        log.info("batch_matching_started", categories=list(categories) if categories else None)

        features_done: Set[Tuple[str, str]] = set()
        skipped_found: Set[str] = set()
        pending: List[Tuple[LostItem, FoundItem]] = []

        # Step 1: Collect eligible pairs not yet scored
        for lost_item in lost_items:
            stats.total_analyzed += 1

            if not lost_item.is_scorable:
                stats.items_skipped += 1
                log.info("item_skipped_missing_text", kind="lost", item_id=lost_item.id)
                continue

            self._persist_features(lost_item, features_done)

            for found_item in found_items:
                if not found_item.is_scorable:
                    skipped_found.add(found_item.id)
                    continue
                if is_excluded_pair(lost_item, found_item):
                    continue

                self._persist_features(found_item, features_done)

                try:
                    already_scored, _ = self.deduplicator.check(lost_item.id, found_item.id)
                except PERSISTENCE_ERRORS as e:
                    stats.pairs_failed += 1
                    log.error("pair_dedup_failed",
                              lost_item_id=lost_item.id,
                              found_item_id=found_item.id,
                              error=str(e))
                    continue

                if already_scored:
                    stats.pairs_skipped_existing += 1
                    continue

                pending.append((lost_item, found_item))

        stats.items_skipped += len(skipped_found)
        log.info("batch_pairs_collected",
                 pending=len(pending),
                 skipped_existing=stats.pairs_skipped_existing)

        # Step 2: Score, then persist matches at or above the threshold
        scored: List[Tuple[LostItem, FoundItem, ScoreResult]] = []
        for lost_item, found_item, result in self._score_pairs(pending):
            stats.pairs_scored += 1
            scored.append((lost_item, found_item, result))

            if result.score < threshold:
                continue

            try:
                match, created = self.store.insert_match_if_absent(
                    self._build_match(lost_item, found_item, result)
                )
            except PERSISTENCE_ERRORS as e:
                stats.pairs_failed += 1
                log.error("match_persist_failed",
                          lost_item_id=lost_item.id,
                          found_item_id=found_item.id,
                          score=result.score,
                          error=str(e))
                continue

            if not created:
                stats.pairs_skipped_existing += 1
                continue

            stats.matches_created += 1
            if match.confidence is MatchConfidence.HIGH:
                stats.high_confidence_matches += 1

        # Step 3: Top-N preview of this run
        scored.sort(key=lambda entry: entry[2].score, reverse=True)
        stats.top_matches = [
            {
                "lost_item_id": lost_item.id,
                "found_item_id": found_item.id,
                "score": result.score,
                "confidence": result.tier.value,
                "similarities": result.similarities[:3],
            }
            for lost_item, found_item, result in scored[:TOP_MATCHES_PREVIEW]
        ]

        # Step 4: Store-wide aggregates
        try:
            stats.average_score = round_score(self.store.average_match_score())
            stats.total_matches = self.store.count_matches()
        except PERSISTENCE_ERRORS as e:
            log.error("batch_aggregates_unavailable", error=str(e))

        log.info("batch_matching_completed",
                 total_analyzed=stats.total_analyzed,
                 matches_created=stats.matches_created,
                 high_confidence_matches=stats.high_confidence_matches,
                 pairs_scored=stats.pairs_scored,
                 pairs_failed=stats.pairs_failed,
                 average_score=stats.average_score)
        return stats

    def _score_pairs(self, pairs: List[Tuple[LostItem, FoundItem]]):
        """Yield (lost, found, result) in input order, optionally in parallel"""
        if self.max_workers == 1 or len(pairs) < 2:
            for lost_item, found_item in pairs:
                yield lost_item, found_item, self.scorer.score(lost_item, found_item)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pair-scorer") as pool:
            results = pool.map(lambda pair: self.scorer.score(*pair), pairs)
            for (lost_item, found_item), result in zip(pairs, results):
                yield lost_item, found_item, result

    def _persist_features(self, item: Item, done: Set[Tuple[str, str]]):
        """Compute and store features once per item per run, only when stale"""
        key = (item.kind.value, item.id)
        if key in done:
            return
        done.add(key)

        features, recomputed = cached_or_fresh(item)
        if not recomputed:
            return

        item.features = features
        try:
            self.store.save_item_features(item.kind, item.id, features)
        except PERSISTENCE_ERRORS as e:
            # Features are a cache; the run scores from the in-memory copy
            logger.warning("item_features_persist_failed",
                           kind=item.kind.value,
                           item_id=item.id,
                           error=str(e))

    @staticmethod
    def _build_match(lost_item: LostItem, found_item: FoundItem, result: ScoreResult) -> Match:
        return Match(
            _id=str(ObjectId()),
            lost_item_id=lost_item.id,
            found_item_id=found_item.id,
            score=result.score,
            similarities=result.similarities,
            differences=result.differences,
            product_details=result.product_details,
            recommendation=result.recommendation,
            status=MatchStatus.PENDING,
            lost_item_user_id=lost_item.user_id,
            found_item_user_id=found_item.user_id,
            scored_by=result.scored_by,
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_potential(
        self,
        lost_items: Optional[List[LostItem]] = None,
        found_items: Optional[List[FoundItem]] = None,
        min_score: Optional[float] = None,
        categories: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> DiscoveryResult:
        """
        Rank candidate pairs without persisting anything.

        Pairs that already have a match are still scored and carry the
        match's review status, so prior decisions stay visible.

        Returns:
            DiscoveryResult sorted by score, highest first
        """
        self._require_store()
        threshold = self.thresholds.get_potential_min_score(min_score)
        limit = limit or settings.potential_match_limit
        result = DiscoveryResult()

        def skip_invalid(document, error):
            result.items_skipped += 1

        if lost_items is None:
            lost_items = self.store.find_lost_items(
                categories=categories, user_id=user_id, limit=limit, on_invalid=skip_invalid
            )
        else:
            lost_items = _filter_items(lost_items, categories, user_id)[:limit]
        if found_items is None:
            found_items = self.store.find_found_items(categories=categories, on_invalid=skip_invalid)
        else:
            found_items = _filter_items(found_items, categories)

        log = logger.bind(lost_count=len(lost_items), found_count=len(found_items), min_score=threshold)

        if not lost_items or not found_items:
            log.info("discovery_no_items")
            return result

        found_features: Dict[str, ItemFeatures] = {}

        for lost_item in lost_items:
            result.total_analyzed += 1
            if not lost_item.is_scorable:
                result.items_skipped += 1
                continue

            lost_features, _ = cached_or_fresh(lost_item)

            for found_item in found_items:
                if not found_item.is_scorable or is_excluded_pair(lost_item, found_item):
                    continue

                try:
                    _, existing = self.deduplicator.check(lost_item.id, found_item.id)
                except PERSISTENCE_ERRORS as e:
                    result.pairs_failed += 1
                    log.error("pair_dedup_failed",
                              lost_item_id=lost_item.id,
                              found_item_id=found_item.id,
                              error=str(e))
                    continue

                if found_item.id not in found_features:
                    found_features[found_item.id] = cached_or_fresh(found_item)[0]

                scored = self.discovery_scorer.score(
                    lost_item, found_item, lost_features, found_features[found_item.id]
                )
                if scored.score < threshold:
                    continue

                result.matches.append(PotentialMatch(
                    lost_item=lost_item,
                    found_item=found_item,
                    score=scored.score,
                    similarities=scored.similarities,
                    rationale=scored.recommendation,
                    confidence=scored.tier,
                    feature_confidence=scored.feature_confidence,
                    existing_status=existing.status.value if existing else POTENTIAL_STATUS,
                    existing_match_id=existing.id if existing else None,
                ))

        result.matches.sort(key=lambda candidate: candidate.score, reverse=True)

        log.info("discovery_completed", **result.summary)
        return result

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    def analyze_item(self, kind: ItemKind, item_id: str) -> Tuple[Item, ItemFeatures]:
        """
        Recompute and store one item's features.

        Raises:
            ItemNotFoundError: Item does not exist
            ItemNotScorableError: Item lacks a title or description
        """
        self._require_store()
        item = self.store.get_item(kind, item_id)
        if item is None:
            raise ItemNotFoundError(kind.value, item_id)
        if not item.is_scorable:
            raise ItemNotScorableError(kind.value, item_id)

        features = features_for(item)
        self.store.save_item_features(kind, item.id, features)
        item.features = features

        logger.info("item_analyzed",
                    kind=kind.value,
                    item_id=item.id,
                    colors=features.colors,
                    brands=features.brands,
                    confidence_score=features.confidence_score)
        return item, features
