import asyncio
import uuid

import pytest

from traveldesk.errors import ConflictError
from traveldesk.services.lock_service import lock_service


async def test_released_lock_leaves_registry():
    key = lock_service.invoice_key(uuid.uuid4())

    async with lock_service.hold(key):
        assert key in lock_service._local

    assert key not in lock_service._local


async def test_waiter_keeps_lock_until_it_is_done():
    key = lock_service.invoice_key(uuid.uuid4())
    order = []

    async def second():
        async with lock_service.hold(key):
            order.append("second")

    async with lock_service.hold(key):
        task = asyncio.create_task(second())
        await asyncio.sleep(0.01)
        order.append("first")
        assert lock_service._users[key] == 2

    await task
    assert order == ["first", "second"]
    assert key not in lock_service._local


async def test_busy_lock_without_wait_conflicts():
    key = lock_service.draft_key(uuid.uuid4())

    async with lock_service.hold(key):
        with pytest.raises(ConflictError):
            async with lock_service.hold(key, wait=False):
                pass

    assert key not in lock_service._local
