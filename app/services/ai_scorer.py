"""
AI Scorer Service with Claude (Anthropic)

Scores a (lost, found) pair by asking Claude to compare both reports.

Composition:
- ExternalScorer: one Claude call per attempt, hard per-attempt deadline,
  strict decode of the JSON answer. Raises on any failure.
- RetryingScorer: wraps ExternalScorer with retries and exponential backoff
  (1s, 2s) and always terminates in FallbackScorer. Never raises.
- build_scorer(): picks RetryingScorer when an API key is configured,
  otherwise the plain FallbackScorer (degraded mode, warned once).
"""

import json
import math
import re
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Union

from anthropic import Anthropic, BadRequestError
from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    StrictFloat,
    StrictInt,
    ValidationError,
    field_validator,
)
import structlog

from app.config import Settings, settings
from app.models.item import FoundItem, Item, LostItem
from app.models.match import ProductDetails, clamp_score
from app.services.matching.strategies import FallbackScorer, Scorer, ScoreResult
from app.services.monitoring.circuit_breakers import get_claude_breaker

logger = structlog.get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_FENCE_OPEN = re.compile(r"```json\s*")
_FENCE_CLOSE = re.compile(r"```\s*")
_DATA_URL = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,")

CONFIDENCE_LABELS = ("high", "medium", "low")

_degraded_mode_logged = False


class ResponseParseError(ValueError):
    """Claude's answer did not contain a usable analysis."""


class AIMatchAnalysis(BaseModel):
    """
    Structured analysis returned by Claude.

    match_score is the only required field and must be a JSON number;
    everything else is defaulted when absent or malformed.
    """
    match_score: Union[StrictInt, StrictFloat] = Field(
        ...,
        validation_alias=AliasChoices("match_score", "matchScore", "score")
    )
    similarities: List[str] = Field(default_factory=list)
    differences: List[str] = Field(default_factory=list)
    confidence: str = "medium"
    product_details: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("product_details", "productDetails")
    )
    recommendation: str = ""

    @field_validator("match_score")
    @classmethod
    def _finite_score(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("match_score must be a finite number")
        return value

    @field_validator("similarities", "differences", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(entry) for entry in value if entry is not None]

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_label(cls, value: Any) -> str:
        if isinstance(value, str) and value.lower() in CONFIDENCE_LABELS:
            return value.lower()
        return "medium"

    @field_validator("product_details", mode="before")
    @classmethod
    def _details_dict(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("recommendation", mode="before")
    @classmethod
    def _recommendation_text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    def to_score_result(self) -> ScoreResult:
        details = ProductDetails.model_validate(
            {
                **self.product_details,
                "unique_identifiers": self.product_details.get(
                    "unique_identifiers", self.product_details.get("uniqueIdentifiers", [])
                ) or [],
            }
        )
        return ScoreResult(
            score=clamp_score(self.match_score),
            similarities=self.similarities,
            differences=self.differences,
            confidence=self.confidence,
            product_details=details.model_dump(),
            recommendation=self.recommendation,
            scored_by="ai",
        )


def _reject_constant(token: str):
    raise ResponseParseError(f"Non-finite number in response: {token}")


def parse_model_response(text: str) -> AIMatchAnalysis:
    """
    Decode Claude's answer into an AIMatchAnalysis.

    Takes the first {...} span in the text, strips markdown code fences,
    decodes it and validates it.

    Raises:
        ResponseParseError: No JSON object, invalid JSON (NaN and Infinity
            included), or no numeric score
    """
    found = _JSON_OBJECT.search(text or "")
    if not found:
        raise ResponseParseError("No JSON found in response")

    json_string = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", found.group(0)))

    try:
        payload = json.loads(json_string, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"JSON parsing failed: {e}") from e

    if not isinstance(payload, dict):
        raise ResponseParseError("Analysis is not a JSON object")

    try:
        return AIMatchAnalysis.model_validate(payload)
    except ValidationError as e:
        raise ResponseParseError(f"Invalid analysis structure: {e.error_count()} errors") from e


def _image_block(image: str) -> Dict[str, Any]:
    """Claude image content block from a base64 string or data URL"""
    media_type = "image/jpeg"
    data = image.strip()

    prefix = _DATA_URL.match(data)
    if prefix:
        media_type = prefix.group(1)
        data = data[prefix.end():]

    if not data:
        raise ValueError("Empty image payload")

    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


def _format_item(label: str, item: Item) -> str:
    date = item.event_date.isoformat() if item.event_date else "unknown"
    return "\n".join([
        f"{label}:",
        f"- Title: {item.title}",
        f"- Description: {item.description}",
        f"- Category: {item.category}",
        f"- Location: {item.location}",
        f"- Date: {date}",
    ])


SYSTEM_PROMPT = """You are an expert product matching system for a campus lost and found office.
You compare one LOST report with one FOUND report and judge whether they describe the same physical item.
Answer with a single JSON object and nothing else."""


def build_prompt(lost_item: LostItem, found_item: FoundItem) -> str:
    """User prompt embedding both items' fields"""
    return f"""Analyze both items and determine if they could be the same product.

{_format_item("LOST ITEM", lost_item)}

{_format_item("FOUND ITEM", found_item)}

Analyze these factors:
1. CATEGORY MATCH: Same or compatible categories
2. BRAND/MODEL: Specific brands, models, or unique identifiers
3. VISUAL CHARACTERISTICS: Color, size, design features, wear patterns
4. CONDITION: New, used, damaged, etc.
5. SERIAL NUMBERS: Any identifying numbers or codes
6. TIMELINE: How close the dates are
7. LOCATION: Proximity on campus
8. UNIQUE FEATURES: Any distinctive characteristics

Respond in this JSON format:
{{
  "match_score": <number 0-100>,
  "similarities": [<specific matching features>],
  "differences": [<notable differences>],
  "confidence": "<high|medium|low>",
  "product_details": {{
    "brand": "<detected brand or null>",
    "model": "<detected model or null>",
    "color": "<detected color or null>",
    "condition": "<condition assessment>",
    "unique_identifiers": [<potential serial numbers>]
  }},
  "recommendation": "<one sentence recommendation>"
}}

Scoring guidelines:
- 90-100: Very likely same item (same brand, model, color, close timeline)
- 70-89: Probably same item (similar features, compatible timeline)
- 50-69: Possible match (some similarities but notable differences)
- Below 50: Unlikely to be the same item"""


class ExternalScorer(Scorer):
    """
    One Claude call per score() invocation.

    Raises on timeout, transport errors, an open circuit, or an unusable
    answer. Callers that need a guaranteed result wrap it in RetryingScorer.
    """

    name = "ai"

    def __init__(
        self,
        client: Anthropic,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self.client = client
        self.model = model or settings.anthropic_model
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.ai_timeout_seconds
        self.max_tokens = max_tokens or settings.ai_max_tokens

    def score(self, lost_item: LostItem, found_item: FoundItem) -> ScoreResult:
        return self.analyze(lost_item, found_item).to_score_result()

    def analyze(self, lost_item: LostItem, found_item: FoundItem) -> AIMatchAnalysis:
        prompt = build_prompt(lost_item, found_item)

        if lost_item.image and found_item.image:
            try:
                content = [_image_block(lost_item.image), _image_block(found_item.image),
                           {"type": "text", "text": prompt}]
                return parse_model_response(self._complete(content))
            except (BadRequestError, ValueError) as e:
                if isinstance(e, ResponseParseError):
                    raise
                logger.info("ai_image_request_failed_text_only",
                            lost_item_id=lost_item.id,
                            found_item_id=found_item.id,
                            error=str(e))

        return parse_model_response(self._complete(prompt))

    def _complete(self, content: Union[str, List[Dict[str, Any]]]) -> str:
        """
        Run one Claude request against the per-attempt deadline.

        Each request gets its own worker thread: a request that hangs past
        the deadline is abandoned and cannot delay the next attempt.
        """
        breaker = get_claude_breaker()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="claude-scorer")
        try:
            future = executor.submit(
                breaker.call,
                self.client.messages.create,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.1,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
                timeout=self.timeout_seconds,
            )
            message = future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            raise TimeoutError(f"AI request exceeded {self.timeout_seconds}s")
        finally:
            executor.shutdown(wait=False)

        return "".join(
            block.text for block in message.content if getattr(block, "type", "text") == "text"
        )


class RetryingScorer(Scorer):
    """
    Retry/backoff decorator around an ExternalScorer that always ends in
    the fallback scorer.

    Attempt n failing sleeps 2^(n-1) seconds before attempt n+1. After the
    last attempt the pair is scored by the fallback scorer.
    """

    name = "ai"

    def __init__(
        self,
        external: Scorer,
        fallback: Optional[Scorer] = None,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.external = external
        self.fallback = fallback or FallbackScorer()
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.ai_max_retries)
        self._sleep = sleep

    def score(self, lost_item: LostItem, found_item: FoundItem) -> ScoreResult:
        log = logger.bind(lost_item_id=lost_item.id, found_item_id=found_item.id)

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = self.external.score(lost_item, found_item)
                log.info("ai_score_completed", attempt=attempt, score=result.score)
                return result
            except Exception as e:
                log.warning("ai_score_attempt_failed",
                            attempt=attempt,
                            max_attempts=self.max_attempts,
                            error_type=type(e).__name__,
                            error=str(e))

            if attempt < self.max_attempts:
                self._sleep(2 ** (attempt - 1))

        log.warning("ai_score_exhausted_using_fallback", attempts=self.max_attempts)
        return self.fallback.score(lost_item, found_item)


def build_scorer(config: Optional[Settings] = None) -> Scorer:
    """
    Build the pair scorer for this process.

    Returns:
        RetryingScorer over Claude when an API key is configured,
        otherwise FallbackScorer
    """
    global _degraded_mode_logged
    config = config or settings

    if not config.anthropic_api_key:
        if not _degraded_mode_logged:
            logger.warning("ai_scoring_disabled",
                           reason="anthropic_api_key_not_configured",
                           mode="fallback_only")
            _degraded_mode_logged = True
        return FallbackScorer()

    client = Anthropic(
        api_key=config.anthropic_api_key,
        max_retries=0,  # RetryingScorer owns retries
        timeout=config.ai_timeout_seconds
    )
    external = ExternalScorer(
        client,
        model=config.anthropic_model,
        timeout_seconds=config.ai_timeout_seconds,
        max_tokens=config.ai_max_tokens
    )
    logger.info("ai_scoring_enabled", model=config.anthropic_model, max_attempts=config.ai_max_retries)
    return RetryingScorer(external, FallbackScorer(), max_attempts=config.ai_max_retries)
