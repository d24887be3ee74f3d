from __future__ import annotations

import asyncio

import pytest

from conftest import turn
from services.message_buffer import MessageBufferService

OWNER = 7


@pytest.fixture
def buffer(chat_store, settings) -> MessageBufferService:
    return MessageBufferService(chat_store, settings)


@pytest.fixture
def slow_buffer(chat_store, settings) -> MessageBufferService:
    """Buffer whose timer never fires during a test."""
    settings.message_buffer_debounce_ms = 10_000
    return MessageBufferService(chat_store, settings)


async def test_appends_inside_quiet_period_are_flushed_once(chat_store, settings):
    settings.message_buffer_debounce_ms = 100
    buffer = MessageBufferService(chat_store, settings)
    m1, m2 = turn("user", "When is my next class?"), turn("assistant", "Tomorrow 7:00.")

    buffer.append(1, OWNER, [m1])
    await asyncio.sleep(0.06)
    buffer.append(1, OWNER, [m2])
    await asyncio.sleep(0.06)
    # Past the first deadline but not the reset one.
    assert chat_store.inserts == []

    await asyncio.sleep(0.15)
    assert chat_store.inserts == [(1, [m1, m2])]
    assert chat_store.calls == ["insert", "touch", "prune"]
    assert chat_store.touched == [1]
    assert chat_store.pruned == [(OWNER, 3)]


async def test_empty_append_is_ignored(buffer, chat_store):
    buffer.append(1, OWNER, [])

    assert buffer.tracked_keys() == 0
    await asyncio.sleep(0.08)
    assert chat_store.calls == []


async def test_flush_now_writes_immediately_and_cancels_timer(buffer, chat_store):
    buffer.append(1, OWNER, [turn("user", "hi")])
    await buffer.flush_now(1)

    assert len(chat_store.inserts) == 1
    assert buffer.tracked_keys() == 0

    await asyncio.sleep(0.1)
    assert len(chat_store.inserts) == 1

    buffer.append(1, OWNER, [turn("user", "again")])
    assert buffer.pending_count(1) == 1
    await asyncio.sleep(0.1)
    assert [len(batch) for _, batch in chat_store.inserts] == [1, 1]


async def test_flush_now_without_pending_messages_is_a_noop(buffer, chat_store):
    await buffer.flush_now(99)

    assert chat_store.calls == []
    assert buffer.tracked_locks() == 0


async def test_latest_owner_is_used_for_pruning(buffer, chat_store):
    buffer.append(1, OWNER, [turn("user", "a")])
    buffer.append(1, OWNER + 1, [turn("user", "b")])
    await buffer.flush_now(1)

    assert chat_store.pruned == [(OWNER + 1, 3)]


async def test_failed_flush_drops_batch_and_cleans_up(buffer, chat_store):
    chat_store.fail_on = "insert"
    buffer.append(1, OWNER, [turn("user", "lost")])

    await buffer.flush_now(1)

    assert chat_store.inserts == []
    assert buffer.tracked_keys() == 0
    assert buffer.tracked_locks() == 0
    assert buffer.stats()["failed"] == 1

    chat_store.fail_on = None
    kept = turn("user", "kept")
    buffer.append(1, OWNER, [kept])
    await buffer.flush_now(1)
    assert chat_store.inserts == [(1, [kept])]


@pytest.mark.parametrize("step", ["touch", "prune"])
async def test_failure_after_insert_is_not_retried(buffer, chat_store, step):
    chat_store.fail_on = step
    buffer.append(1, OWNER, [turn("user", "once")])

    await buffer.flush_now(1)
    await buffer.flush_now(1)

    assert len(chat_store.inserts) == 1
    assert chat_store.calls.count("insert") == 1


async def test_tracking_returns_to_zero_after_many_chats(buffer, chat_store):
    for chat_id in range(50):
        buffer.append(chat_id, OWNER, [turn("user", f"msg {chat_id}")])
    assert buffer.tracked_keys() == 50

    await asyncio.gather(*(buffer.flush_now(chat_id) for chat_id in range(25)))
    await asyncio.sleep(0.15)

    assert len(chat_store.inserts) == 50
    assert buffer.tracked_keys() == 0
    assert buffer.tracked_locks() == 0
    assert buffer.stats()["in_flight"] == 0


async def test_tracking_returns_to_zero_after_failures(buffer, chat_store):
    chat_store.fail_on = "prune"
    for chat_id in range(10):
        buffer.append(chat_id, OWNER, [turn("user", "x")])

    await asyncio.sleep(0.15)

    assert buffer.tracked_keys() == 0
    assert buffer.tracked_locks() == 0
    assert buffer.stats()["failed"] == 10


async def test_append_during_flush_starts_a_new_batch(slow_buffer, chat_store):
    buffer = slow_buffer
    first, second = turn("user", "first"), turn("user", "second")
    chat_store.gate = asyncio.Event()

    buffer.append(1, OWNER, [first])
    flushing = asyncio.create_task(buffer.flush_now(1))
    await chat_store.entered.wait()

    buffer.append(1, OWNER, [second])
    assert buffer.pending_count(1) == 1

    chat_store.gate.set()
    await flushing
    assert chat_store.inserts == [(1, [first])]
    assert buffer.pending_count(1) == 1

    await buffer.flush_now(1)
    assert chat_store.inserts == [(1, [first]), (1, [second])]
    assert buffer.tracked_keys() == 0
    assert buffer.tracked_locks() == 0


async def test_flushes_for_one_chat_never_overlap(slow_buffer, chat_store):
    buffer = slow_buffer
    chat_store.gate = asyncio.Event()
    buffer.append(1, OWNER, [turn("user", "a")])
    first = asyncio.create_task(buffer.flush_now(1))
    await chat_store.entered.wait()

    buffer.append(1, OWNER, [turn("user", "b")])
    second = asyncio.create_task(buffer.flush_now(1))
    await asyncio.sleep(0.01)
    assert chat_store.active == 1
    assert buffer.tracked_locks() == 1

    chat_store.gate.set()
    await asyncio.gather(first, second)

    assert chat_store.max_active == 1
    assert len(chat_store.inserts) == 2
    assert buffer.tracked_locks() == 0


async def test_shutdown_flushes_pending_chats(slow_buffer, chat_store):
    slow = slow_buffer
    slow.append(1, OWNER, [turn("user", "a")])
    slow.append(2, OWNER, [turn("user", "b")])

    await slow.shutdown()

    assert sorted(chat_id for chat_id, _ in chat_store.inserts) == [1, 2]
    assert slow.tracked_keys() == 0
    assert slow.tracked_locks() == 0


async def test_sweep_reschedules_buffer_without_timer(buffer, chat_store):
    buffer.append(1, OWNER, [turn("user", "stranded")])
    buffer._buffers[1].timer.cancel()

    result = buffer.sweep_idle()
    assert result == {"stale_locks": 0, "orphaned_buffers": 1}

    await asyncio.sleep(0.02)
    assert len(chat_store.inserts) == 1
    assert buffer.tracked_keys() == 0
