"""Serialization for read-count-then-write checks.

`administrator_guard(db)` wraps the last-administrator check and the
mutation that depends on it in one unit:

  - an in-process asyncio lock serializes guarded units within a worker;
  - on PostgreSQL, `pg_advisory_xact_lock` serializes them across workers
    until the transaction ends;
  - the unit commits before the locks are released, so the next guarded
    unit always counts committed state.

Any exception inside the block rolls the transaction back.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Arbitrary application-wide key for pg_advisory_xact_lock.
ADMIN_GUARD_LOCK_KEY = 0x46564144  # "FVAD"

_guard_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def _loop_lock() -> asyncio.Lock:
    """One lock per running event loop (asyncio.Lock binds to its loop)."""
    loop = asyncio.get_running_loop()
    lock = _guard_locks.get(loop)
    if lock is None:
        lock = _guard_locks[loop] = asyncio.Lock()
    return lock


@asynccontextmanager
async def administrator_guard(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    async with _loop_lock():
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": ADMIN_GUARD_LOCK_KEY},
            )
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise
