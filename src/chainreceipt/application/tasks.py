from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


async def cancel_all(tasks: list[asyncio.Future[Any]]) -> None:
    """Cancel whatever is still running and wait until it has actually stopped."""
    pending = [t for t in tasks if not t.done()]
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.debug("cancelled %d sibling tasks", len(pending))


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """
    Like asyncio.gather, but the first failure cancels the remaining awaitables
    before the error propagates, so no sibling keeps running detached.
    """
    tasks = [asyncio.ensure_future(a) for a in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        await cancel_all(tasks)
        raise
