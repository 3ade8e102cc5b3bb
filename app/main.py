"""
Mini CRM API - Main Application

Customer records, orders and rule-based audience segments.

SECURITY FEATURES:
- Conditional API docs (disabled in production by default)
- Logging without token payloads or database credentials
- Production-hardened configuration
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from app.api.v2.router import api_router
from app.config import settings
from app.database import init_db
from app.exceptions import CRMException, create_exception_handlers
from app.middleware import CorrelationIdMiddleware, CorrelationLogFilter
from app.services.ai_gateway import ai_gateway
from app.tasks.segment_refresh import (
    start_segment_refresh_scheduler,
    stop_segment_refresh_scheduler,
)
# Import all models to register them with SQLAlchemy metadata before init_db()
from app.models import Customer, Order, Segment, User  # noqa: F401

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationLogFilter())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Mini CRM API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    # SECURITY: Don't log full database URL, just the driver
    if settings.DATABASE_URL:
        logger.info(f"Database driver: {settings.DATABASE_URL.split('://', 1)[0]}")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        # SECURITY: Don't log full exception details which may contain credentials
        logger.error(f"Database initialization failed: {type(e).__name__}")
        logger.warning("App starting without database - some features may not work")

    start_segment_refresh_scheduler()
    yield
    # Shutdown
    logger.info("Shutting down Mini CRM API...")
    stop_segment_refresh_scheduler()
    await ai_gateway.close()


# SECURITY: Conditionally enable docs based on settings
docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="Mini CRM API",
    description="Customer records and rule-based audience segmentation",
    version="1.0.0",
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

# CORS middleware
# SECURITY: Restrict origins to known frontend URLs
allowed_origins = [settings.FRONTEND_URL]

# Allow localhost origins for development/testing
if settings.ENVIRONMENT != "production":
    allowed_origins.extend([
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# RFC 7807 error responses
exception_handlers = create_exception_handlers(allowed_origins)
app.add_exception_handler(CRMException, exception_handlers["crm"])
app.add_exception_handler(StarletteHTTPException, exception_handlers["http"])
app.add_exception_handler(RequestValidationError, exception_handlers["validation"])
app.add_exception_handler(Exception, exception_handlers["generic"])

# Include routers
app.include_router(api_router, prefix="/api/v2")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    response = {
        "name": "Mini CRM API",
        "version": "1.0.0",
        "health": "/health",
    }
    # Only include docs link if enabled
    if settings.DOCS_ENABLED:
        response["docs"] = "/docs"
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=5001,
        reload=settings.DEBUG,
    )
