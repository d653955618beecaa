"""Main FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from splitlab.config import get_settings
from splitlab.errors import SplitTestError
from splitlab.middleware.logging import LoggingMiddleware, configure_logging, get_logger
from splitlab.api import events, health, split_tests
from splitlab.database import engine, Base
from splitlab.services.content_client import close_content_client
import splitlab.models  # noqa: F401  registers the tables on Base

settings = get_settings()
configure_logging(settings.debug)
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_ready")

    yield  # App runs here

    # Shutdown
    await close_content_client()
    logger.info("shutting_down", service=settings.app_name)

# Create FastAPI app
app = FastAPI(
    title="SplitLab",
    description="Content split testing with ethical stop conditions for learning modules",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# CORS middleware - Allow the admin dashboard
allowed_origins = [
    "http://localhost:5173",  # Local development
    "http://localhost:3000",  # Alternative local port
    settings.frontend_url,     # Production frontend
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID"]
)

# Logging middleware
app.add_middleware(LoggingMiddleware)


@app.exception_handler(SplitTestError)
async def split_test_error_handler(request: Request, exc: SplitTestError):
    """Render domain errors with their reason code."""
    if exc.status_code >= 500:
        logger.error("split_test_error", code=exc.code, error=exc.message, path=request.url.path)
    else:
        logger.warning("split_test_error", code=exc.code, error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": {"code": exc.code, "message": exc.message}}
    )


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(events.router, tags=["events"])
app.include_router(split_tests.router, tags=["split-tests"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "SplitLab",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "enrolments": "POST /split-tests/enrolments",
            "split_tests": "GET /split-tests"
        }
    }


# uvicorn splitlab.main:app --reload
