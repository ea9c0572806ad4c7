"""
Matching service exceptions

Input and configuration errors raised to callers. External-service errors
never appear here: the AI scorer absorbs them and falls back.
"""


class MatchingError(Exception):
    """Base class for matching service errors."""


class EmptyItemSetError(MatchingError):
    """A batch run needs at least one lost and one found item."""

    def __init__(self, lost_count: int, found_count: int):
        self.lost_count = lost_count
        self.found_count = found_count
        super().__init__(
            f"Need both lost and found items to run matching "
            f"(lost={lost_count}, found={found_count})"
        )


class ItemNotFoundError(MatchingError):
    """A referenced lost or found item does not exist."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} item {item_id} not found")


class ItemNotScorableError(MatchingError):
    """An item lacks the title or description needed for comparison."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} item {item_id} is missing a title or description")


class StoreUnavailableError(MatchingError):
    """No persistence backend is configured or reachable."""
