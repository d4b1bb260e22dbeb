"""Supabase persistence for orchestration instance rows."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from supabase import Client, create_client

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class SupabaseInstanceStore:
    """Lightweight wrapper around the Supabase client for instance rows.

    Each orchestration instance is one row keyed by ``instance_id``. Without
    credentials the store is disabled and every call is a no-op, leaving the
    engine memory-only.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or default_settings
        self._enabled = bool(self._settings.supabase_url and self._settings.supabase_service_role_key)
        self._table = self._settings.supabase_instances_table
        self._client: Client | None = None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        """Return whether Supabase persistence is configured."""

        return self._enabled

    def _ensure_client(self) -> Client:
        if not self._enabled:
            raise RuntimeError("Supabase credentials missing; persistence disabled")
        if self._client is None:
            self._client = create_client(self._settings.supabase_url, self._settings.supabase_service_role_key)
        return self._client

    async def _execute(self, fn: Callable[[Client], Any]) -> Any:
        if not self._enabled:
            return None

        async with self._lock:
            try:
                return await asyncio.to_thread(lambda: fn(self._ensure_client()))
            except Exception:
                logger.exception("Supabase instance store operation failed")
                return None

    async def save(self, row: dict[str, Any]) -> None:
        """Upsert the row for ``row["instance_id"]``."""

        if not self._enabled:
            return

        await self._execute(lambda client: client.table(self._table).upsert(row).execute())

    async def load(self, statuses: Iterable[str]) -> list[dict[str, Any]]:
        """Return every row whose runtime status is one of ``statuses``."""

        if not self._enabled:
            return []

        wanted = list(statuses)
        result = await self._execute(
            lambda client: client.table(self._table).select("*").in_("runtime_status", wanted).execute()
        )
        data = getattr(result, "data", None)
        if not isinstance(data, list):
            return []
        return [row for row in data if isinstance(row, dict)]

    async def purge(self, older_than: datetime, statuses: Iterable[str]) -> int:
        """Delete rows in ``statuses`` last updated before ``older_than``."""

        if not self._enabled:
            return 0

        wanted = list(statuses)
        result = await self._execute(
            lambda client: client.table(self._table)
            .delete()
            .in_("runtime_status", wanted)
            .lt("last_updated_at", older_than.isoformat())
            .execute()
        )
        data = getattr(result, "data", None)
        return len(data) if isinstance(data, list) else 0
