"""Mem0-backed vector store: one Mem0 ``user_id`` per agent namespace."""

import asyncio
import logging
import os
from functools import wraps
from typing import Any, Dict, List, Optional

from mem0 import MemoryClient

from knowledge_base.core.config import settings
from knowledge_base.core.exceptions import ExternalDependencyError
from knowledge_base.schemas.knowledge import VectorHit

logger = logging.getLogger(__name__)

# Module-level singleton client
_mem0_client = None


def get_mem0_client() -> MemoryClient:
    """Get or create the singleton Mem0 client."""
    global _mem0_client
    if _mem0_client is None:
        if not settings.MEM0_API_KEY:
            raise ExternalDependencyError("MEM0_API_KEY is not configured")
        logger.info("Initializing Mem0 client...")
        os.environ["MEM0_API_KEY"] = settings.MEM0_API_KEY
        _mem0_client = MemoryClient(api_key=settings.MEM0_API_KEY)
        logger.info("Initialized Mem0 singleton client")
    return _mem0_client


# Helper to convert sync operations to async
def async_wrap(func):
    """Wraps a synchronous function to be called asynchronously.

    Args:
        func: The synchronous function to wrap

    Returns:
        An async function that runs the original function in an executor
    """
    @wraps(func)
    async def run(*args, **kwargs):
        logger.debug(f"Starting async_wrap for {func.__name__} with args: {args[:1]} and kwargs: {list(kwargs.keys())}")
        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, lambda: func(*args, **kwargs))
            logger.debug(f"Completed async_wrap for {func.__name__}")
            return result
        except Exception as e:
            logger.error(f"Error in async_wrap for {func.__name__}: {e}")
            raise
    return run


def _is_not_found(error: Exception) -> bool:
    message = str(error).lower()
    return "not found" in message or "404" in message


class Mem0VectorStore:
    """Stores each chunk as one Mem0 memory, namespaced by agent id."""

    def __init__(self, client: Optional[MemoryClient] = None):
        self._client = client

    @property
    def client(self) -> MemoryClient:
        if self._client is None:
            self._client = get_mem0_client()
        return self._client

    async def upsert(self, namespace: str, chunk_id: str, text: str,
                     metadata: Optional[Dict[str, Any]] = None) -> str:
        """Store ``text`` verbatim (no LLM inference) and return the Mem0 memory id."""
        messages = [{"role": "user", "content": text.strip()}]
        add_func = async_wrap(self.client.add)
        raw_result = await add_func(
            messages,
            user_id=namespace,
            metadata={**(metadata or {}), "chunk_id": chunk_id},
            version="v2",
            output_format="v1.1",
            infer=False,
        )

        # v2 answers {"results": [...]}, older clients a bare list or dict
        if isinstance(raw_result, dict) and "results" in raw_result:
            results = raw_result["results"]
        elif isinstance(raw_result, list):
            results = raw_result
        else:
            results = [raw_result] if isinstance(raw_result, dict) else []

        for result in results:
            memory_id = result.get("id") or result.get("memory_id")
            if memory_id:
                return str(memory_id)

        logger.warning(f"Unexpected Mem0 add response: {raw_result}")
        raise ExternalDependencyError(f"Mem0 returned no memory id for chunk {chunk_id}")

    async def delete(self, namespace: str, rag_entry_id: str) -> bool:
        """Delete one memory. Returns False when it was already gone."""
        delete_func = async_wrap(self.client.delete)
        try:
            await delete_func(memory_id=rag_entry_id)
        except Exception as e:
            if _is_not_found(e):
                logger.info(f"Memory {rag_entry_id} already removed from {namespace}")
                return False
            raise
        return True

    async def search(self, namespace: str, query: str, limit: int = 5) -> List[VectorHit]:
        search_func = async_wrap(self.client.search)
        raw_results = await search_func(
            query=query,
            user_id=namespace,
            limit=limit,
            version="v2",
            output_format="v1.1",
        )

        if isinstance(raw_results, dict) and "results" in raw_results:
            raw_memories = raw_results["results"]
        elif isinstance(raw_results, list):
            raw_memories = raw_results
        else:
            logger.warning(f"Unexpected result format from Mem0 search: {type(raw_results)}")
            raw_memories = []

        hits = []
        for memory in raw_memories:
            if not isinstance(memory, dict) or not memory.get("id"):
                continue
            score = memory.get("score", memory.get("similarity", 0.0)) or 0.0
            hits.append(VectorHit(rag_entry_id=str(memory["id"]), score=float(score)))

        logger.info(f"Vector search in {namespace} returned {len(hits)} hits")
        return hits[:limit]
