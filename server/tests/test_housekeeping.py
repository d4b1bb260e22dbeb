from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from ventriloquist.services.housekeeping import HistoryCleaner, seconds_until
from ventriloquist.services.orchestration import RuntimeStatus


def test_seconds_until_later_today() -> None:
    now = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
    assert seconds_until(12, now) == 2.5 * 3600


def test_seconds_until_rolls_over_to_tomorrow() -> None:
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    assert seconds_until(12, now) == 24 * 3600


def test_purge_once_uses_retention_window(test_settings) -> None:
    calls = []

    class Engine:
        async def purge_history(self, older_than, statuses):  # noqa: ANN001
            calls.append((older_than, list(statuses)))
            return 3

    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    removed = asyncio.run(HistoryCleaner(Engine(), test_settings).purge_once(now))

    assert removed == 3
    assert calls == [(now - timedelta(days=test_settings.history_retention_days), [RuntimeStatus.COMPLETED])]
