"""Run async service code from synchronous Celery tasks."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from knowledge_base.db.session import engine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(func: Callable[[], Awaitable[T]]) -> T:
    """Run ``func()`` on a fresh event loop.

    Pooled connections belong to the loop that opened them, so the engine
    pool is disposed before the loop closes.
    """
    async def _main() -> Any:
        try:
            return await func()
        finally:
            await engine.dispose()

    return asyncio.run(_main())
