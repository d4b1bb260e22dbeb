from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

import pytest

from ventriloquist.config import Settings
from ventriloquist.main import build_engine


class RecordingLineClient:
    """Stands in for LineMessagingClient; keeps every reply in memory."""

    def __init__(self, fail: bool = False) -> None:
        self.replies: list[tuple[str, list[dict[str, Any]]]] = []
        self.fail = fail

    @property
    def verifies_signatures(self) -> bool:
        return False

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        return True

    async def reply_message(self, reply_token: str, messages: list[dict[str, Any]]) -> None:
        if self.fail:
            raise RuntimeError("LINE is down")
        self.replies.append((reply_token, list(messages)))

    async def aclose(self) -> None:
        return None

    def texts(self) -> list[str]:
        return [m.get("text", "") for _, messages in self.replies for m in messages if m["type"] == "text"]


class MemoryInstanceStore:
    """Stands in for SupabaseInstanceStore; rows live in a dict keyed by instance id."""

    enabled = True

    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows: dict[str, dict[str, Any]] = {row["instance_id"]: row for row in rows or []}
        self.saved: list[dict[str, Any]] = []

    async def save(self, row: dict[str, Any]) -> None:
        self.saved.append(row)
        self.rows[row["instance_id"]] = row

    async def load(self, statuses) -> list[dict[str, Any]]:  # noqa: ANN001
        wanted = set(statuses)
        return [dict(row) for row in self.rows.values() if row["runtime_status"] in wanted]

    async def purge(self, older_than, statuses) -> int:  # noqa: ANN001
        return 0


async def settle(rounds: int = 20) -> None:
    """Let scheduled orchestration tasks run until they block again."""

    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def test_settings() -> Settings:
    return replace(
        Settings(),
        line_channel_access_token="token",
        line_channel_secret=None,
        silent_audio_url="https://audio.example.com/silent.mp3",
        speech_lang="en",
        supabase_url=None,
        supabase_service_role_key=None,
        session_launch_policy="replace",
        chat_poll_interval=0.01,
        chat_poll_timeout=0.2,
    )


@pytest.fixture
def line_client() -> RecordingLineClient:
    return RecordingLineClient()


@pytest.fixture
def make_engine(line_client):
    def _make(store=None):  # noqa: ANN001
        return build_engine(line_client, store=store)

    return _make
