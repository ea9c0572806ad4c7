"""
Database Configuration and Service Wiring

Builds the MongoDB store and the matching engine once per process (API,
worker, scheduler, scripts) and exposes them as FastAPI dependencies.
"""

from typing import Optional, Tuple

from fastapi import Request
import structlog

from app.config import Settings, settings
from app.services.ai_scorer import build_scorer
from app.services.matching import ThresholdManager
from app.services.matching_engine import MatchingEngine
from app.services.mongodb_client import MongoDBService

logger = structlog.get_logger()

store: Optional[MongoDBService] = None
engine: Optional[MatchingEngine] = None


def init_services(config: Optional[Settings] = None) -> Tuple[MongoDBService, MatchingEngine]:
    """
    Connect to MongoDB and build the matching engine.

    A missing or unreachable MongoDB is logged, not raised: operations that
    need the store fail individually with StoreUnavailableError.
    """
    global store, engine
    config = config or settings

    store = MongoDBService(config.mongodb_url, config.mongodb_database)
    if store.is_available():
        store.ensure_indexes()
    else:
        logger.warning("mongodb_not_available", impact="matching_operations_disabled")

    engine = MatchingEngine(
        store,
        build_scorer(config),
        thresholds=ThresholdManager(config.match_min_score, config.potential_match_min_score),
        max_workers=config.batch_max_workers
    )
    return store, engine


def get_services() -> Tuple[MongoDBService, MatchingEngine]:
    """Process-wide services, initialized on first use"""
    if engine is None:
        return init_services()
    return store, engine


def close_services():
    global store, engine
    if store is not None:
        store.close()
    store = None
    engine = None


def get_store(request: Request) -> MongoDBService:
    """
    Dependency for the MongoDB store
    Usage: store: MongoDBService = Depends(get_store)
    """
    return request.app.state.store


def get_engine(request: Request) -> MatchingEngine:
    """
    Dependency for the matching engine
    Usage: engine: MatchingEngine = Depends(get_engine)
    """
    return request.app.state.engine
