"""Process-local record of LINE webhook events that were already handled."""

from __future__ import annotations

from collections import OrderedDict
from typing import List, Optional


class WebhookEventCache:
    """
    Bounded cache of ``webhookEventId`` values.

    - LINE redelivers events when a webhook call fails or times out.
    - The oldest ids are evicted once ``max_entries`` is reached.
    - Only touched from the event loop, so ``check_and_add`` never yields
      between the lookup and the insert.
    """

    def __init__(self, max_entries: int = 4096) -> None:
        self._max_entries = max_entries
        self._keys: "OrderedDict[str, None]" = OrderedDict()

    def check_and_add(self, key: Optional[str]) -> bool:
        """
        Record ``key`` and return True if it was not seen before.

        Events without an id are always treated as new.
        """
        if not key:
            return True
        if key in self._keys:
            return False
        self._keys[key] = None
        while len(self._keys) > self._max_entries:
            self._keys.popitem(last=False)
        return True

    def snapshot(self) -> List[str]:
        return list(self._keys)
