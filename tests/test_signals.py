"""
Tests for signal scorer functions
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.services.matching.signals import days_apart, is_location_proximate, location_match, string_similarity


class TestStringSimilarity:
    """Tests for the normalized edit-distance ratio."""

    def test_case_insensitive(self):
        assert string_similarity("Wallet", "wallet") == 1.0

    def test_both_empty(self):
        assert string_similarity("", "") == 1.0

    def test_no_overlap(self):
        assert string_similarity("abc", "xyz") == 0.0

    def test_ratio_over_longer_string(self):
        # distance("kitten", "sitting") = 3, longer length 7
        assert string_similarity("kitten", "sitting") == pytest.approx(4 / 7)

    def test_none_treated_as_empty(self):
        assert string_similarity(None, "wallet") == 0.0


class TestLocationMatch:
    """Tests for fallback scorer location comparison."""

    def test_exact_after_normalization(self):
        assert location_match("Library 2nd floor", "  library   2nd FLOOR ") == "exact"

    def test_containment_is_nearby(self):
        assert location_match("Library", "Main library entrance") == "nearby"

    def test_unrelated(self):
        assert location_match("Gym", "Cafeteria") == "none"

    def test_empty_is_none(self):
        assert location_match("", "Library") == "none"
        assert location_match(None, None) == "none"
        assert location_match("", "  ") == "none"


class TestLocationProximity:
    """Tests for the campus proximity heuristic."""

    def test_same_building(self):
        assert is_location_proximate("Building A room 101", "building a lobby") is True

    def test_building_and_unrelated_area(self):
        assert is_location_proximate("Building A room 101", "Gym locker room") is False

    def test_shared_common_area(self):
        assert is_location_proximate("Main library", "library cafe") is True

    def test_no_building_names_not_proximate(self):
        """Two locations without a building token are not the same building."""
        assert is_location_proximate("Lab 1", "Lab 2") is False

    def test_missing_location(self):
        assert is_location_proximate("", "library") is False


class TestDaysApart:
    """Tests for date distance."""

    def test_absolute_days(self):
        base = datetime(2025, 3, 10)
        assert days_apart(base, base + timedelta(days=3)) == pytest.approx(3.0)
        assert days_apart(base + timedelta(days=3), base) == pytest.approx(3.0)

    def test_missing_date(self):
        assert days_apart(None, datetime(2025, 3, 10)) is None

    def test_mixed_naive_and_aware(self):
        naive = datetime(2025, 3, 10, 12)
        aware = datetime(2025, 3, 12, 12, tzinfo=timezone.utc)
        assert days_apart(naive, aware) == pytest.approx(2.0)
