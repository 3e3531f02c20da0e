"""Queue position assignment.

Positions are count-then-increment: the next position is one more than
the number of stored entries. The read and the later write are separate
store calls, so two signups racing between them can receive the same
position. Signup traffic is bursty but low-contention, and this gap is
accepted rather than serialized.

The ``waitlist_count`` aggregate doubles as a high-water mark: after an
operator deletes an entry the prefix count drops, but the aggregate does
not, so deleted positions are never handed out again.
"""

from datetime import datetime

from healthscan.logging_config import get_logger
from healthscan.storage.kv import KVStore
from healthscan.waitlist.models import COUNT_KEY, USER_PREFIX, utcnow

logger = get_logger(__name__)


class PositionAssigner:
    """Computes and records waitlist positions."""

    def __init__(self, kv: KVStore):
        self.kv = kv

    def high_water_mark(self) -> int:
        record = self.kv.get(COUNT_KEY)
        if not isinstance(record, dict):
            return 0
        try:
            return int(record.get("count", 0))
        except (TypeError, ValueError):
            logger.warning("waitlist_count_corrupt", record=record)
            return 0

    def next_position(self) -> int:
        """Return the position the next new entry should receive."""
        stored = self.kv.count_by_prefix(USER_PREFIX)
        return max(stored, self.high_water_mark()) + 1

    def record(self, position: int, now: datetime | None = None) -> None:
        """Advance the aggregate count to position if it is higher."""
        if position <= self.high_water_mark():
            return
        self.kv.set(
            COUNT_KEY,
            {"count": position, "lastUpdated": (now or utcnow()).isoformat()},
        )
