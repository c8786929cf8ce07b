# backend/icp_miner/services/task_pool.py
"""
Bounded pool for (job, page) units of work.

One pool is shared by every orchestrator invocation in the process, so the
scheduler can fan out across sites without more than ``max_workers`` pages
in flight. Each unit is bounded by ``timeout_seconds``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from icp_miner.config import settings

logger = logging.getLogger(__name__)


class PageTaskPool:

    def __init__(self, max_workers: int = 4, timeout_seconds: Optional[float] = 600.0):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self.timeout_seconds = timeout_seconds
        self._semaphore = asyncio.Semaphore(max_workers)
        self.in_flight = 0

    async def run(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Submit one unit and await its result.

        Raises:
            asyncio.TimeoutError: the unit exceeded ``timeout_seconds``
        """
        async with self._semaphore:
            self.in_flight += 1
            logger.debug(f"Page pool: {self.in_flight}/{self.max_workers} in flight")
            try:
                if self.timeout_seconds:
                    return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout_seconds)
                return await func(*args, **kwargs)
            finally:
                self.in_flight -= 1


def create_page_task_pool() -> PageTaskPool:
    """Factory function"""
    return PageTaskPool(
        max_workers=settings.PAGE_WORKERS,
        timeout_seconds=settings.PAGE_TIMEOUT_SECONDS,
    )
