from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import pytest

from core.config import Settings
from core.database import Database
from models.chat import ChatTurn
from models.user import UserProfile


class FakeClock:
    """Whole-second clock the tests move by hand."""

    def __init__(self, start: int = 1_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeChatStore:
    """Records buffer flushes; can fail or block on demand."""

    def __init__(self):
        self.inserts: List[Tuple[int, List[ChatTurn]]] = []
        self.touched: List[int] = []
        self.pruned: List[Tuple[int, int]] = []
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def bulk_insert_messages(self, chat_id, messages):
        self.calls.append("insert")
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.entered.set()
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_on == "insert":
                raise RuntimeError("insert failed")
            self.inserts.append((chat_id, list(messages)))
            return len(messages)
        finally:
            self.active -= 1

    async def update_chat_updated_at(self, chat_id, when=None):
        self.calls.append("touch")
        if self.fail_on == "touch":
            raise RuntimeError("touch failed")
        self.touched.append(chat_id)

    async def prune_chats_for_user(self, owner_id, keep):
        self.calls.append("prune")
        if self.fail_on == "prune":
            raise RuntimeError("prune failed")
        self.pruned.append((owner_id, keep))
        return 0


def turn(role: str, content: str) -> ChatTurn:
    return ChatTurn(role=role, content=content)


def profile(user_id: str = "2101234", full_name: str = "Nguyen Van A", **extra) -> UserProfile:
    return UserProfile(user_id=user_id, full_name=full_name, **extra)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'campus.db'}",
        user_cache_capacity=2,
        user_cache_ttl=0,
        message_buffer_debounce_ms=50,
        max_chats_per_user=3,
        userinfo_url="https://portal.example.edu/api/userinfo",
        log_format="console",
        cleanup_enabled=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chat_store() -> FakeChatStore:
    return FakeChatStore()


@pytest.fixture
async def database(settings):
    db = Database(settings)
    await db.startup()
    try:
        yield db
    finally:
        await db.shutdown()
