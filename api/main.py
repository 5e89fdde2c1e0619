"""
BidVet - FastAPI Application

API server for construction bid comparison and leveling.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from config.logging_config import setup_logging
from api.routes import projects, items, breakdown_templates, cron
from api.middleware.error_handler import setup_error_handlers
from api.middleware.logging import LoggingMiddleware
from api.middleware.rate_limit import setup_rate_limiting

# Set up logging
logger = setup_logging(log_level="INFO")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    logger.info("Starting BidVet API...")
    logger.info(f"Environment: {settings.api_env}")
    logger.info(f"LLM Provider: {settings.llm_provider.value}")

    if settings.api_env == "development":
        from database.connection import init_db
        await init_db()

    yield

    from workers.queue import close_redis_pool
    from database.connection import close_db
    await close_redis_pool()
    await close_db()

    logger.info("Shutting down BidVet API...")


# Create FastAPI app
app = FastAPI(
    title="BidVet API",
    description="AI-assisted construction bid comparison and leveling",
    version="1.0.0",
    lifespan=lifespan
)

# Set up error handlers (before middleware)
setup_error_handlers(app)

# Set up rate limiting
setup_rate_limiting(app)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Configure CORS (should be last middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# API Routes
# ============================================================================

app.include_router(projects.router, prefix="/api/v1")
app.include_router(items.router, prefix="/api/v1")
app.include_router(breakdown_templates.router, prefix="/api/v1")
app.include_router(cron.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "BidVet API",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.api_env,
        "llm_provider": settings.llm_provider.value,
        "model": settings.default_model,
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.api_env
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )
