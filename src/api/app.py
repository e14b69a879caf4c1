"""
FastAPI application for the Math Comic Generator.

Run with: python main.py serve --reload
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dotenv import load_dotenv

from src.api.rate_limit import limiter
from src.api.routes import comics, health, images
from src.core.cloudwatch_logging import setup_cloudwatch_logging, flush_cloudwatch_logging
from src.core.config import AppConfig
from src.services.context import PipelineContext


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: owns the pipeline context."""
    logger.info("Application starting up...")

    config = AppConfig()

    # CloudWatch logging (sends pipeline logs only, opt-in via CLOUDWATCH_ENABLED=true)
    setup_cloudwatch_logging(config.cloudwatch)

    app.state.context = PipelineContext.create(config)
    logger.info(f"Comic storage at {config.storage.base_path}")

    yield

    # Shutdown: drain events and close HTTP clients
    await app.state.context.aclose()
    app.state.context = None
    logger.info("Application shutting down...")
    flush_cloudwatch_logging()


app = FastAPI(
    title="Math Comic Generator API",
    description="""
Turn a short math topic into an illustrated multi-panel educational comic.

## Features
- **Topic validation** - Checks that the input is a real math concept and suggests alternatives
- **Age-aware generation** - Panel count, style and vocabulary adapt to child/teen/adult readers
- **AI-generated illustrations** - One image per panel via OpenRouter
- **Export** - Download comics as JSON, PDF or a ZIP bundle with images

## Workflow
1. **POST** `/api/v1/comics/validate` - Optionally check a topic first
2. **POST** `/api/v1/comics/generate` - Generate and store a comic
3. **GET** `/api/v1/comics/{comic_id}` - Fetch a stored comic
4. **GET** `/api/v1/comics/{comic_id}/export?format=pdf` - Download it
    """,
    version=health.API_VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8080",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(comics.router, prefix="/api/v1")
app.include_router(images.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    """Redirect to API documentation."""
    return {
        "message": "Math Comic Generator API",
        "docs": "/docs",
        "redoc": "/redoc",
    }
