"""Forced garbage collection before heap snapshots."""

import asyncio
import logging
from typing import Awaitable, Callable

from ..core.session import DebugSession

logger = logging.getLogger(__name__)

GC_REPEAT = 6
GC_SETTLE_SECONDS = 0.2
GC_FINAL_SETTLE_SECONDS = 1.4


async def force_gc(session: DebugSession, repeat: int = GC_REPEAT,
                   settle: float = GC_SETTLE_SECONDS,
                   final_settle: float = GC_FINAL_SETTLE_SECONDS,
                   sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    """Collect garbage ``repeat`` times, then let the heap settle.

    One pass is not enough: objects kept alive only by finalizers or weak
    reference bookkeeping are freed by the sweep after the one that drops
    their last strong reference. A failing command propagates immediately,
    since a partially collected heap would skew the comparison.
    """
    for i in range(repeat):
        await session.send("HeapProfiler.collectGarbage")
        await sleep(settle)
    logger.debug(f"Forced {repeat} GC rounds on {session.target_id}, settling {final_settle}s")
    await sleep(final_settle)
