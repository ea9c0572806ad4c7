"""
Items API Router
Feature analysis for a single lost or found item
"""

from fastapi import APIRouter, Depends
import structlog

from app.database import get_engine
from app.models.item import ItemKind
from app.services.matching_engine import MatchingEngine

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/items", tags=["items"])


@router.post("/{kind}/{item_id}/analyze")
def analyze_item(
    kind: ItemKind,
    item_id: str,
    engine: MatchingEngine = Depends(get_engine)
):
    """
    Extract features for one item and store them on the item

    Args:
        kind: "lost" or "found"
        item_id: Item id
    """
    item, features = engine.analyze_item(kind, item_id)

    return {
        "item_id": item.id,
        "kind": kind.value,
        "features": features.model_dump(),
        "message": "Item analyzed successfully",
    }
