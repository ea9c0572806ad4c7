"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Environment
    environment: str = "development"

    # MongoDB (lost_items, found_items, matches collections)
    mongodb_url: Optional[str] = None
    mongodb_database: str = "lost_and_found"

    # Redis & Job Queue
    redis_url: Optional[str] = None

    # LLM
    # Without a key every pair is scored by the deterministic fallback scorer
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    ai_timeout_seconds: float = 30.0  # Per attempt
    ai_max_retries: int = 3
    ai_max_tokens: int = 1024

    # Matching thresholds (0-100 scale)
    match_min_score: int = 30  # Batch runs persist matches at or above this
    potential_match_min_score: int = 10  # Discovery runs surface candidates at or above this
    potential_match_limit: int = 100  # Max lost items per discovery run

    # Batch execution
    batch_max_workers: int = 1  # 1 = sequential pair scoring
    batch_interval_minutes: int = 0  # 0 disables the scheduled batch run

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 60  # Seconds before auto-recovery attempt

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
