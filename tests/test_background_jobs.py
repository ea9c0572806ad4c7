"""
Tests for the worker actor, the periodic scheduler and circuit breakers
"""

from unittest.mock import Mock, patch

import pytest
from pymongo.errors import AutoReconnect

from app.actors.batch_matcher import MAX_RETRIES, run_batch_matching, should_retry
from app.scheduler import run_scheduled_batch, start_scheduler, stop_scheduler
from app.services.exceptions import EmptyItemSetError, ItemNotFoundError, StoreUnavailableError
from app.services.matching import FallbackScorer, ThresholdManager
from app.services.matching_engine import MatchingEngine
from app.services.monitoring.circuit_breakers import (
    CircuitBreakerError,
    get_breaker,
    get_claude_breaker,
    reset_breakers,
)
from tests.conftest import InMemoryStore


@pytest.fixture
def services(store):
    engine = MatchingEngine(store, FallbackScorer(), thresholds=ThresholdManager(30, 10), max_workers=1)
    with patch("app.database.get_services", return_value=(store, engine)):
        yield store, engine


class TestBatchActor:
    """Tests for run_batch_matching"""

    def test_runs_batch(self, services):
        store, _ = services

        result = run_batch_matching(min_score=30, correlation_id="req-123")

        assert result["status"] == "completed"
        assert result["matches_created"] == 1
        assert len(store.matches) == 1

    def test_empty_item_set_skipped(self, services):
        store, _ = services
        store.lost.clear()

        result = run_batch_matching()

        assert result["status"] == "skipped"
        assert "lost=0" in result["reason"]

    def test_store_unavailable_propagates(self, services):
        store, _ = services
        store.available = False

        with pytest.raises(StoreUnavailableError):
            run_batch_matching()


class TestShouldRetry:
    """Tests for the retry predicate"""

    @pytest.mark.parametrize("exc", [
        StoreUnavailableError("down"),
        AutoReconnect("lost connection"),
        CircuitBreakerError("open"),
        ConnectionError("refused"),
        TimeoutError("slow"),
    ])
    def test_transient_errors_retried(self, exc):
        assert should_retry(0, exc) is True
        assert should_retry(MAX_RETRIES, exc) is False

    @pytest.mark.parametrize("exc", [
        EmptyItemSetError(0, 3),
        ItemNotFoundError("lost", "x"),
        ValueError("bad"),
        KeyError("missing"),
    ])
    def test_permanent_errors_not_retried(self, exc):
        assert should_retry(0, exc) is False


class TestScheduler:
    """Tests for the periodic batch job"""

    def test_not_started_in_testing(self):
        scheduler = start_scheduler("testing", 15)
        assert scheduler.running is False
        assert scheduler.get_jobs() == []

    def test_not_started_without_interval(self):
        scheduler = start_scheduler("production", 0)
        assert scheduler.running is False

    def test_started_with_interval(self):
        scheduler = start_scheduler("production", 15)
        try:
            assert scheduler.running is True
            assert scheduler.get_job("periodic_batch_matching") is not None
        finally:
            stop_scheduler(scheduler)
        assert scheduler.running is False

    def test_scheduled_run(self, services):
        store, _ = services
        run_scheduled_batch()
        assert len(store.matches) == 1

    def test_scheduled_run_swallows_failures(self):
        engine = Mock()
        engine.run_batch.side_effect = EmptyItemSetError(0, 0)
        with patch("app.database.get_services", return_value=(InMemoryStore(), engine)):
            run_scheduled_batch()

        engine.run_batch.side_effect = RuntimeError("boom")
        with patch("app.database.get_services", return_value=(InMemoryStore(), engine)):
            run_scheduled_batch()

        assert engine.run_batch.call_count == 2


class TestCircuitBreakers:
    """Tests for breaker registry"""

    def test_unknown_service(self):
        with pytest.raises(ValueError):
            get_breaker("redis")

    def test_same_instance_until_reset(self):
        breaker = get_claude_breaker()
        assert get_breaker("claude") is breaker
        assert breaker.name == "claude_api"

        reset_breakers()
        assert get_claude_breaker() is not breaker
