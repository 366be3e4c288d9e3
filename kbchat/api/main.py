"""FastAPI application main module."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from kbchat.api.deps import get_http_client, get_job_registry, get_scrape_client, limiter
from kbchat.api.routes_chat import router as chat_router
from kbchat.api.routes_knowledge import router as knowledge_router
from kbchat.core.config import settings
from kbchat.core.errors import KbChatError
from kbchat.core.logging import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    logger.info(f"Starting kbchat API ({settings.env})")
    if not (settings.has_managed_session or settings.has_direct_key):
        logger.warning("No completion credentials configured; chat will return a configuration message")
    yield
    logger.info("Shutting down kbchat API")
    await get_job_registry().shutdown()
    await get_http_client().aclose()
    await get_scrape_client().aclose()


# Create FastAPI app
app = FastAPI(
    title="kbchat API",
    description="Knowledge ingestion and context-augmented chat service",
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(KbChatError)
async def kbchat_error_handler(request: Request, exc: KbChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# CORS middleware; chat widgets are embedded on customer sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(chat_router, prefix="/v1", tags=["chat"])
app.include_router(knowledge_router, prefix="/v1", tags=["knowledge"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "0.1.0",
        "managed_backend": settings.has_managed_session,
        "direct_backend": settings.has_direct_key,
    }
