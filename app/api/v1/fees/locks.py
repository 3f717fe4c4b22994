"""
Per-ledger mutual exclusion for read-modify-write on a fee ledger.

In-process: one asyncio.Lock per ledger id. Across processes the ledger row is also selected
FOR UPDATE (see service._get_ledger) and guarded by the mapper's version counter.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID
from weakref import WeakValueDictionary

_ledger_locks: "WeakValueDictionary[UUID, asyncio.Lock]" = WeakValueDictionary()


def _lock_for(ledger_id: UUID) -> asyncio.Lock:
    lock = _ledger_locks.get(ledger_id)
    if lock is None:
        lock = asyncio.Lock()
        _ledger_locks[ledger_id] = lock
    return lock


@asynccontextmanager
async def ledger_lock(ledger_id: UUID) -> AsyncIterator[None]:
    lock = _lock_for(ledger_id)
    async with lock:
        yield
