from datetime import datetime, timedelta

from secfeed.core.datetime_utils import utc_now
from secfeed.core.logging import get_logger

logger = get_logger(__name__)


class RecencyPolicy:
    """
    Per-feed volume and age bound shared by every parser.

    An item is admitted only while fewer than ``max_items`` have been
    admitted, and only if there is no lookback window, its date falls inside
    the window, or its date is unparseable. Undated items are tolerated
    rather than rejected; the cap still applies to them.
    """

    def __init__(
        self,
        max_items: int | None = None,
        lookback_days: int | None = None,
        now: datetime | None = None,
    ) -> None:
        self.max_items = max_items if max_items and max_items > 0 else None
        self.cutoff: datetime | None = None
        if lookback_days:
            self.cutoff = (now or utc_now()) - timedelta(days=lookback_days)
        self.kept = 0
        self.dropped = 0

    @property
    def full(self) -> bool:
        return self.max_items is not None and self.kept >= self.max_items

    def admit(self, published: datetime | None) -> bool:
        """Decide whether the next item is kept, counting it if so."""
        if self.full:
            self.dropped += 1
            return False

        if self.cutoff is not None and published is not None and published < self.cutoff:
            self.dropped += 1
            return False

        self.kept += 1
        return True


def create_recency_policy(max_items: int | None, lookback_days: int | None) -> RecencyPolicy:
    """Create a recency policy from ingest configuration."""
    policy = RecencyPolicy(max_items=max_items, lookback_days=lookback_days)
    logger.bind(max_items=policy.max_items, cutoff=policy.cutoff).debug("recency_policy_created")
    return policy
