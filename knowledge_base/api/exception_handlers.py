"""
Exception handlers for the knowledge base API.

Service errors carry their own HTTP status; they are answered as
``{"detail": message, "error": <exception class>}``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from knowledge_base.core.exceptions import KnowledgeBaseError

logger = logging.getLogger(__name__)


async def knowledge_base_exception_handler(request: Request, exc: KnowledgeBaseError):
    path = getattr(request.url, "path", "") if request and request.url else ""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, path, exc.message)
    else:
        # Client errors (bad input, wrong stage, unknown ids) are expected
        logger.debug("%s on %s: %s", type(exc).__name__, path, exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KnowledgeBaseError, knowledge_base_exception_handler)
