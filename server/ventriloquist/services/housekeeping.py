"""Daily purge of finished orchestration history."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..config import Settings, settings as default_settings
from .orchestration import DurableOrchestrationEngine, RuntimeStatus

logger = logging.getLogger(__name__)


def seconds_until(hour_utc: int, now: datetime) -> float:
    """Seconds from ``now`` to the next occurrence of ``hour_utc``:00 UTC."""

    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class HistoryCleaner:
    """Purges ``Completed`` instances older than the retention window once a day."""

    def __init__(self, engine: DurableOrchestrationEngine, settings: Optional[Settings] = None) -> None:
        self._engine = engine
        self._settings = settings or default_settings

    async def purge_once(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self._settings.history_retention_days)
        removed = await self._engine.purge_history(cutoff, [RuntimeStatus.COMPLETED])
        logger.info("Purged %d completed instance(s) older than %s", removed, cutoff.isoformat())
        return removed

    async def run_forever(self) -> None:
        while True:
            delay = seconds_until(self._settings.history_purge_hour_utc, datetime.now(timezone.utc))
            await asyncio.sleep(delay)
            try:
                await self.purge_once()
            except Exception:
                logger.exception("History purge failed")
