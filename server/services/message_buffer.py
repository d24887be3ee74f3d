"""Debounced per-chat write buffer for chat history.

Every assistant turn produces a couple of messages. Writing them one request
at a time means one insert, one chat touch and one prune per turn, so they
are collected per chat and written as one batch once the chat has been quiet
for ``message_buffer_debounce_ms``.

Delivery is at-most-once: a batch whose write fails is logged and dropped.
Chat history here is a convenience copy, not the system of record.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Sequence, Set, TYPE_CHECKING

from core.config import Settings
from core.logging import get_logger, log_buffer_flush
from models.chat import ChatTurn

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)


@dataclass
class BufferEntry:
    """Messages waiting to be written for one chat."""
    owner_id: int
    messages: List[ChatTurn] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # flushes holding or waiting on the lock


class MessageBufferService:
    """Coalesces chat message writes per chat key.

    Per key: ABSENT -> PENDING on first append, PENDING -> PENDING on further
    appends (timer reset), PENDING -> FLUSHING on timer expiry or flush_now,
    FLUSHING -> ABSENT once the write finishes. Flushes of the same key are
    serialized by a per-key lock. The entry is taken out of the buffer before
    any I/O, so appends that arrive mid-flush open a new PENDING cycle.

    Tracking maps only hold keys that are pending or being flushed.
    """

    def __init__(self, store: "Database", settings: Settings):
        self.store = store
        self.debounce_ms = settings.message_buffer_debounce_ms
        self.max_chats_per_user = settings.max_chats_per_user
        self._buffers: Dict[Hashable, BufferEntry] = {}
        self._locks: Dict[Hashable, _KeyLock] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._flushed = 0
        self._failed = 0

    # =========================================================================
    # Public API
    # =========================================================================

    def append(self, chat_id: Hashable, owner_id: int, messages: Sequence[ChatTurn]) -> None:
        """Queue messages for a chat and restart its debounce timer.

        Must be called from within the running event loop.
        """
        if not messages:
            return

        entry = self._buffers.get(chat_id)
        if entry is None:
            entry = BufferEntry(owner_id=owner_id)
            self._buffers[chat_id] = entry
        else:
            entry.owner_id = owner_id
            if entry.timer is not None:
                entry.timer.cancel()

        entry.messages.extend(messages)
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self.debounce_ms / 1000, self._on_timer, chat_id)

        logger.debug("Buffered chat messages", chat_id=chat_id,
                     added=len(messages), pending=len(entry.messages))

    async def flush_now(self, chat_id: Hashable) -> None:
        """Write the chat's pending messages immediately and wait for it."""
        entry = self._buffers.get(chat_id)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        await self._flush(chat_id)

    async def shutdown(self) -> None:
        """Flush everything still pending and wait for in-flight flushes."""
        pending = list(self._buffers.keys())
        for chat_id in pending:
            await self.flush_now(chat_id)

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        logger.info("Message buffer drained", flushed_on_shutdown=len(pending))

    def sweep_idle(self) -> Dict[str, int]:
        """Drop lock trackers nobody holds and revive entries that lost their timer.

        Flushes already clean up after themselves; this is the periodic backstop.
        """
        stale_locks = [
            key for key, key_lock in self._locks.items()
            if key_lock.users == 0 and not key_lock.lock.locked()
        ]
        for key in stale_locks:
            del self._locks[key]

        orphaned = [
            key for key, entry in self._buffers.items()
            if entry.timer is None or entry.timer.cancelled()
        ]
        for key in orphaned:
            self._spawn_flush(key)

        return {"stale_locks": len(stale_locks), "orphaned_buffers": len(orphaned)}

    # =========================================================================
    # Introspection
    # =========================================================================

    def pending_count(self, chat_id: Hashable) -> int:
        entry = self._buffers.get(chat_id)
        return len(entry.messages) if entry else 0

    def tracked_keys(self) -> int:
        return len(self._buffers)

    def tracked_locks(self) -> int:
        return len(self._locks)

    def stats(self) -> Dict[str, Any]:
        return {
            "pending_chats": len(self._buffers),
            "pending_messages": sum(len(e.messages) for e in self._buffers.values()),
            "tracked_locks": len(self._locks),
            "in_flight": len(self._tasks),
            "flushed": self._flushed,
            "failed": self._failed,
            "debounce_ms": self.debounce_ms,
        }

    # =========================================================================
    # Flush machinery
    # =========================================================================

    def _on_timer(self, chat_id: Hashable) -> None:
        self._spawn_flush(chat_id)

    def _spawn_flush(self, chat_id: Hashable) -> None:
        task = asyncio.get_running_loop().create_task(self._flush(chat_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _track(self, chat_id: Hashable) -> _KeyLock:
        key_lock = self._locks.get(chat_id)
        if key_lock is None:
            key_lock = _KeyLock()
            self._locks[chat_id] = key_lock
        key_lock.users += 1
        return key_lock

    def _untrack(self, chat_id: Hashable, key_lock: _KeyLock) -> None:
        key_lock.users -= 1
        if key_lock.users == 0 and self._locks.get(chat_id) is key_lock:
            del self._locks[chat_id]

    async def _flush(self, chat_id: Hashable) -> None:
        key_lock = self._track(chat_id)
        try:
            async with key_lock.lock:
                entry = self._buffers.pop(chat_id, None)
                if entry is None:
                    return
                if entry.timer is not None:
                    entry.timer.cancel()
                if not entry.messages:
                    return

                messages = entry.messages
                try:
                    await self.store.bulk_insert_messages(chat_id, messages)
                    await self.store.update_chat_updated_at(chat_id)
                    await self.store.prune_chats_for_user(entry.owner_id, self.max_chats_per_user)
                except Exception as e:
                    self._failed += 1
                    log_buffer_flush(logger, chat_id, entry.owner_id, len(messages), error=e)
                    return

                self._flushed += 1
                log_buffer_flush(logger, chat_id, entry.owner_id, len(messages))
        finally:
            self._untrack(chat_id, key_lock)
