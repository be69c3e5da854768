"""FastAPI application for the terminal agent."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from termai import __version__
from termai.api.routes import get_session_manager, router
from termai.llm.client import ProviderSelector

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info("Starting termai API")

    available = await ProviderSelector().list_available_providers()
    if available:
        logger.info(f"LLM providers available: {', '.join(available)}")
    else:
        logger.warning(
            "No LLM provider is available. Auto-run will fail until one is configured "
            f"in {settings.provider_config_path}"
        )

    yield

    logger.info("Shutting down termai API")
    await get_session_manager().close_all()


app = FastAPI(
    title="termai API",
    description="Terminal sessions with a supervised LLM auto-run loop",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "termai API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    available = await ProviderSelector().list_available_providers()

    return {
        "status": "healthy" if available else "degraded",
        "providers": available,
        "sessions": len(get_session_manager().list_ids()),
    }
