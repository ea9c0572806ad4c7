"""
Tests for MatchingEngine

Tests cover:
- Batch runs: persistence threshold, idempotent re-runs, skips, per-pair
  failure counting, store-wide aggregates, feature write-back
- Discovery runs: ranking, existing status annotation, no persistence
- Single-pair scoring and single-item analysis
"""

from datetime import timedelta

import pytest

from app.models.item import ItemKind
from app.models.match import MatchConfidence, MatchStatus
from app.services.exceptions import (
    EmptyItemSetError,
    ItemNotFoundError,
    ItemNotScorableError,
    StoreUnavailableError,
)
from app.services.matching import FallbackScorer, Scorer, ScoreResult, ThresholdManager
from app.services.matching.features import features_for
from app.services.matching_engine import MatchingEngine, is_excluded_pair
from tests.conftest import BASE_DATE, InMemoryStore, make_found, make_lost


class FixedScorer(Scorer):
    """Returns a preset score per found item id (default for the rest)."""

    name = "fixed"

    def __init__(self, default: float = 50, by_found_id=None):
        self.default = default
        self.by_found_id = by_found_id or {}
        self.calls = []

    def score(self, lost_item, found_item):
        self.calls.append((lost_item.id, found_item.id))
        value = self.by_found_id.get(found_item.id, self.default)
        return ScoreResult(score=value, similarities=["Same category"], recommendation="ok", scored_by="ai")


def build_engine(store, scorer=None, max_workers=1):
    return MatchingEngine(
        store,
        scorer or FallbackScorer(),
        thresholds=ThresholdManager(30, 10),
        max_workers=max_workers
    )


class TestRunBatch:
    """Tests for persisted batch runs."""

    def test_creates_match_for_iphone_pair(self, store):
        stats = build_engine(store).run_batch()

        assert stats.total_analyzed == 1
        assert stats.matches_created == 1
        assert stats.pairs_scored == 1

        match = store.matches[("lost-1", "found-1")]
        assert match.status is MatchStatus.PENDING
        assert match.score >= 55
        assert match.lost_item_user_id == "owner-1"
        assert match.found_item_user_id == "finder-1"
        assert match.scored_by == "fallback"

    def test_rerun_is_idempotent(self, store):
        scorer = FixedScorer(default=65)
        engine = build_engine(store, scorer)

        first = engine.run_batch()
        second = engine.run_batch()

        assert first.matches_created == 1
        assert second.matches_created == 0
        assert second.pairs_skipped_existing == 1
        assert second.pairs_scored == 0
        assert len(scorer.calls) == 1
        assert len(store.matches) == 1

    def test_empty_found_set_rejected(self, lost_item):
        store = InMemoryStore([lost_item], [])
        with pytest.raises(EmptyItemSetError) as exc_info:
            build_engine(store).run_batch()

        assert exc_info.value.lost_count == 1
        assert exc_info.value.found_count == 0

    def test_empty_explicit_lists_rejected(self, store):
        with pytest.raises(EmptyItemSetError):
            build_engine(store).run_batch(lost_items=[], found_items=[make_found()])

    def test_store_unavailable(self, lost_item, found_item):
        store = InMemoryStore([lost_item], [found_item], available=False)
        with pytest.raises(StoreUnavailableError):
            build_engine(store).run_batch()

    def test_items_without_text_skipped(self, found_item):
        store = InMemoryStore(
            [make_lost("lost-1"), make_lost("lost-2", description="  ")],
            [found_item, make_found("found-2", title="")]
        )
        scorer = FixedScorer(default=65)

        stats = build_engine(store, scorer).run_batch()

        assert stats.total_analyzed == 2
        assert stats.items_skipped == 2
        assert scorer.calls == [("lost-1", "found-1")]

    def test_same_reporter_pair_skipped(self, lost_item):
        store = InMemoryStore([lost_item], [make_found(user_id=lost_item.user_id)])
        scorer = FixedScorer(default=90)

        stats = build_engine(store, scorer).run_batch()

        assert scorer.calls == []
        assert stats.matches_created == 0

    def test_self_pair_skipped(self):
        store = InMemoryStore([make_lost("shared-id")], [make_found("shared-id")])
        scorer = FixedScorer(default=90)

        build_engine(store, scorer).run_batch()

        assert scorer.calls == []

    def test_threshold(self, store):
        below = build_engine(store, FixedScorer(default=25)).run_batch()
        assert below.matches_created == 0

        at_override = build_engine(store, FixedScorer(default=25)).run_batch(min_score=20)
        assert at_override.matches_created == 1

    def test_high_confidence_counted(self):
        store = InMemoryStore([make_lost()], [make_found("found-1"), make_found("found-2")])
        scorer = FixedScorer(by_found_id={"found-1": 85, "found-2": 65})

        stats = build_engine(store, scorer).run_batch()

        assert stats.matches_created == 2
        assert stats.high_confidence_matches == 1
        assert store.matches[("lost-1", "found-1")].confidence is MatchConfidence.HIGH

    def test_persistence_failure_counted_and_run_continues(self):
        store = InMemoryStore([make_lost()], [make_found("found-1"), make_found("found-2")])
        store.failing_pairs = {("lost-1", "found-1")}

        stats = build_engine(store, FixedScorer(default=70)).run_batch()

        assert stats.pairs_failed == 1
        assert stats.matches_created == 1
        assert ("lost-1", "found-2") in store.matches

    def test_average_over_all_stored_matches(self, store):
        store.add_match("lost-old", "found-old", score=40)

        stats = build_engine(store, FixedScorer(default=80)).run_batch()

        assert stats.total_matches == 2
        assert stats.average_score == 60

    def test_average_rounds_half_up(self, store):
        store.add_match("lost-old", "found-old", score=40)

        stats = build_engine(store, FixedScorer(default=45)).run_batch()

        assert stats.average_score == 43

    def test_malformed_documents_skipped_and_run_continues(self, store):
        store.raw_lost.append({
            "_id": "lost-long", "title": "x" * 150, "description": "Title over the length limit",
            "category": "Electronics",
        })
        store.raw_lost.append({"_id": "lost-null", "title": "Black wallet", "description": None, "category": None})
        store.raw_found.append({"_id": "found-null", "title": None, "description": None, "location": None})
        scorer = FixedScorer(default=65)

        stats = build_engine(store, scorer).run_batch()

        assert stats.total_analyzed == 2
        assert stats.items_skipped == 3
        assert scorer.calls == [("lost-1", "found-1")]
        assert ("lost-1", "found-1") in store.matches

    def test_category_filter(self):
        store = InMemoryStore(
            [make_lost("lost-1"), make_lost("lost-2", category="Clothing")],
            [make_found("found-1"), make_found("found-2", category="Clothing")]
        )
        scorer = FixedScorer(default=70)

        stats = build_engine(store, scorer).run_batch(categories=["Clothing"])

        assert stats.total_analyzed == 1
        assert scorer.calls == [("lost-2", "found-2")]

    def test_inactive_items_not_loaded(self):
        store = InMemoryStore(
            [make_lost("lost-1"), make_lost("lost-2", status="resolved")],
            [make_found("found-1"), make_found("found-2", status="archived")]
        )
        scorer = FixedScorer(default=70)

        build_engine(store, scorer).run_batch()

        assert scorer.calls == [("lost-1", "found-1")]

    def test_features_persisted_once_per_item(self):
        store = InMemoryStore([make_lost("lost-1"), make_lost("lost-2")], [make_found("found-1")])

        build_engine(store, FixedScorer(default=10)).run_batch()

        assert sorted(store.saved_features) == [("found", "found-1"), ("lost", "lost-1"), ("lost", "lost-2")]
        assert store.lost["lost-1"].features is not None

    def test_fresh_cached_features_not_rewritten(self):
        lost = make_lost()
        lost.features = features_for(lost)
        store = InMemoryStore([lost], [make_found()])

        build_engine(store, FixedScorer(default=10)).run_batch()

        assert ("lost", "lost-1") not in store.saved_features
        assert ("found", "found-1") in store.saved_features

    def test_parallel_scoring_matches_sequential(self):
        found = [make_found(f"found-{i}") for i in range(5)]
        sequential_store = InMemoryStore([make_lost()], found)
        parallel_store = InMemoryStore([make_lost()], found)

        sequential = build_engine(sequential_store, FixedScorer(default=70)).run_batch()
        parallel = build_engine(parallel_store, FixedScorer(default=70), max_workers=4).run_batch()

        assert parallel.matches_created == sequential.matches_created == 5
        assert set(parallel_store.matches) == set(sequential_store.matches)

    def test_top_matches_preview(self):
        found = [make_found(f"found-{i}") for i in range(12)]
        scorer = FixedScorer(by_found_id={f"found-{i}": 40 + i for i in range(12)})
        store = InMemoryStore([make_lost()], found)

        stats = build_engine(store, scorer).run_batch()

        scores = [entry["score"] for entry in stats.top_matches]
        assert len(scores) == 10
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == 51


class TestDiscoverPotential:
    """Tests for non-persisting discovery runs."""

    def test_existing_status_reported_without_duplicate(self, store):
        store.add_match("lost-1", "found-1", score=75, status=MatchStatus.CONFIRMED, match_id="m-1")

        result = build_engine(store).discover_potential(min_score=10)

        assert len(result.matches) == 1
        candidate = result.matches[0]
        assert candidate.existing_status == "confirmed"
        assert candidate.existing_match_id == "m-1"
        assert result.summary["existing_matches"] == 1
        assert len(store.matches) == 1

    def test_new_pair_marked_potential(self, store):
        result = build_engine(store).discover_potential()

        assert result.matches[0].existing_status == "potential"
        assert result.summary["new_potential"] == 1

    def test_persists_nothing(self, store):
        build_engine(store).discover_potential()

        assert store.matches == {}
        assert store.saved_features == []

    def test_sorted_by_score_descending(self):
        lost = make_lost()
        strong = make_found("found-strong")
        weak = make_found("found-weak", title="Black hat", description="Black hat", category="Clothing")
        store = InMemoryStore([lost], [weak, strong])

        result = build_engine(store).discover_potential()

        assert [c.found_item.id for c in result.matches] == ["found-strong", "found-weak"]
        assert result.matches[0].score > result.matches[1].score

    def test_below_threshold_excluded(self):
        unrelated = make_found(
            title="Scarf",
            description="Wool scarf, knitted",
            category="Clothing",
            location="Parking lot C",
        )
        store = InMemoryStore([make_lost(location="Gym")], [unrelated])

        result = build_engine(store).discover_potential()

        assert result.matches == []
        assert result.summary["total_analyzed"] == 1

    def test_user_filter(self):
        store = InMemoryStore(
            [make_lost("lost-1", user_id="owner-1"), make_lost("lost-2", user_id="owner-2")],
            [make_found()]
        )

        result = build_engine(store).discover_potential(user_id="owner-2")

        assert result.total_analyzed == 1
        assert {c.lost_item.id for c in result.matches} == {"lost-2"}

    def test_uses_feature_overlap_not_ai(self, store):
        scorer = FixedScorer(default=99)

        result = build_engine(store, scorer).discover_potential()

        assert scorer.calls == []
        assert result.matches[0].feature_confidence is not None

    def test_no_items_returns_empty_result(self):
        result = build_engine(InMemoryStore()).discover_potential()

        assert result.matches == []
        assert result.summary["total_potential_matches"] == 0

    def test_malformed_documents_skipped(self, store):
        store.raw_found.append({"_id": "found-long", "title": "y" * 101, "description": "Found something"})

        result = build_engine(store).discover_potential()

        assert result.items_skipped == 1
        assert result.summary["items_skipped"] == 1
        assert [m.found_item.id for m in result.matches] == ["found-1"]

    def test_to_dict(self, store):
        data = build_engine(store).discover_potential().to_dict()

        entry = data["matches"][0]
        assert entry["lost_item"]["id"] == "lost-1"
        assert entry["found_item"]["id"] == "found-1"
        assert entry["confidence"] in ("high", "medium", "low")
        assert set(data["summary"]) >= {"high_confidence", "medium_confidence", "low_confidence"}


class TestScoreSingle:
    """Tests for on-demand pair scoring."""

    def test_creates_then_returns_existing(self, store):
        scorer = FixedScorer(default=66)
        engine = build_engine(store, scorer)

        match, created = engine.score_single("lost-1", "found-1")
        again, created_again = engine.score_single("lost-1", "found-1")

        assert created is True
        assert created_again is False
        assert again.id == match.id
        assert len(scorer.calls) == 1

    def test_low_score_still_stored(self, store):
        match, created = build_engine(store, FixedScorer(default=5)).score_single("lost-1", "found-1")

        assert created is True
        assert match.confidence is MatchConfidence.LOW

    def test_missing_item(self, store):
        with pytest.raises(ItemNotFoundError) as exc_info:
            build_engine(store).score_single("lost-1", "nope")
        assert exc_info.value.kind == "found"

    def test_item_without_description(self, found_item):
        store = InMemoryStore([make_lost(description="")], [found_item])
        with pytest.raises(ItemNotScorableError):
            build_engine(store).score_single("lost-1", "found-1")


class TestAnalyzeItem:
    """Tests for single-item feature analysis."""

    def test_features_stored(self, store):
        item, features = build_engine(store).analyze_item(ItemKind.FOUND, "found-1")

        assert item.id == "found-1"
        assert "black" in features.colors
        assert store.found["found-1"].features == features
        assert store.saved_features == [("found", "found-1")]

    def test_missing_item(self, store):
        with pytest.raises(ItemNotFoundError):
            build_engine(store).analyze_item(ItemKind.LOST, "nope")


class TestExcludedPairs:
    """Tests for the pair eligibility rule."""

    def test_anonymous_reporters_not_excluded(self):
        assert is_excluded_pair(make_lost(user_id=""), make_found(user_id="")) is False

    def test_same_reporter_excluded(self):
        assert is_excluded_pair(make_lost(user_id="u1"), make_found(user_id="u1")) is True

    def test_date_irrelevant(self):
        assert is_excluded_pair(make_lost(), make_found(date_found=BASE_DATE + timedelta(days=400))) is False
