from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from knowledge_base import __version__
from knowledge_base.api.exception_handlers import register_exception_handlers
from knowledge_base.api.router import api_router
from knowledge_base.core.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Agent Knowledge Base API",
    description="Document ingestion, preview and lifecycle management for agent knowledge",
    version=__version__,
)

# Set up CORS
origins = (
    [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    if "," in settings.CORS_ORIGINS
    else [settings.CORS_ORIGINS]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API router
app.include_router(api_router, prefix=settings.API_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("knowledge_base.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
