"""
Match Deduplicator

Answers "has this (lost, found) pair been scored already?" before any
scoring work is spent on it. Read-only: creation goes through the store's
atomic insert-if-absent.
"""

from typing import Optional, Tuple

import structlog

from app.models.match import Match

logger = structlog.get_logger()


class MatchDeduplicator:
    """Pair lookup keyed on (lost_item_id, found_item_id) in that order."""

    def __init__(self, store):
        self.store = store

    def check(self, lost_item_id: str, found_item_id: str) -> Tuple[bool, Optional[Match]]:
        """
        Look up an existing match for the pair.

        Returns:
            (already_scored, existing_match)
        """
        existing = self.store.find_match(lost_item_id, found_item_id)
        if existing is not None:
            logger.debug("pair_already_scored",
                         lost_item_id=lost_item_id,
                         found_item_id=found_item_id,
                         match_id=existing.id,
                         status=existing.status.value)
            return True, existing
        return False, None
