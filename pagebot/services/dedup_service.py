from collections import OrderedDict
from typing import Optional

from pagebot.config import settings
from pagebot.logging_config import get_logger

logger = get_logger("dedup_service")


class DeliveryDeduplicator:
    """Remembers Messenger message ids so platform retries are processed once.

    Ids are kept in insertion order; once more than ``max_ids`` are recorded the
    oldest ones are forgotten first.
    """

    def __init__(self, max_ids: int = settings.dedup_max_ids):
        if max_ids < 1:
            raise ValueError("max_ids must be positive")
        self.max_ids = max_ids
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def should_process(self, message_id: Optional[str]) -> bool:
        # Postbacks and referrals carry no mid and are never deduplicated here.
        if message_id is None:
            return True

        if message_id in self._seen:
            logger.info("Duplicate delivery skipped", extra={"context": {"message_id": message_id}})
            return False

        self._seen[message_id] = None
        self._evict()
        return True

    def _evict(self) -> None:
        overflow = len(self._seen) - self.max_ids
        for _ in range(max(overflow, 0)):
            self._seen.popitem(last=False)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
