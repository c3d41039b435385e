import asyncio

import pytest

from workers.progress_narrator import ProgressNarrator


async def test_notice_fires_when_stage_is_slow(chat):
    narrator = ProgressNarrator(chat, 1, 10)
    async with narrator.stage(0.01, "still working"):
        await asyncio.sleep(0.05)

    assert chat.edits == [{"chat_id": 1, "message_id": 10, "text": "still working", "keyboard": None}]


async def test_notice_is_cancelled_when_stage_settles(chat):
    narrator = ProgressNarrator(chat, 1, 10)
    async with narrator.stage(0.05, "still working"):
        pass
    await asyncio.sleep(0.1)

    assert chat.edits == []
    assert narrator.pending == 0


async def test_notice_is_cancelled_when_stage_fails(chat):
    narrator = ProgressNarrator(chat, 1, 10)
    with pytest.raises(RuntimeError):
        async with narrator.stage(0.05, "still working"):
            raise RuntimeError("boom")
    await asyncio.sleep(0.1)
    assert chat.edits == []


async def test_cancel_all(chat):
    narrator = ProgressNarrator(chat, 1, 10)
    narrator.schedule(0.05, "one")
    narrator.schedule(0.05, "two")
    assert narrator.pending == 2

    narrator.cancel_all()
    await asyncio.sleep(0.1)
    assert chat.edits == []


async def test_failed_edit_does_not_propagate(chat):
    async def broken_edit(*args, **kwargs):
        raise RuntimeError("message to edit not found")

    chat.edit_message = broken_edit
    narrator = ProgressNarrator(chat, 1, 10)
    task = narrator.schedule(0, "late")
    await task
    assert task.exception() is None
