import logging
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from app.api.trending import router as trending_router
from app.core.config import settings
from app.core.database import init_db
from app.processing.bootstrap import build_media_worker, build_trending_scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Vidstream Media API", version="0.1.0")

# Configure CORS origins - support both localhost and production domains
cors_origins = ["http://localhost:3000"]
allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "")
if allowed_origins_env:
    cors_origins.extend([origin.strip() for origin in allowed_origins_env.split(",")])

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trending_router)

if settings.storage_backend == "local":
    os.makedirs(settings.local_storage_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.local_storage_dir), name="uploads")

_background = []


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Starting application startup sequence...")
    logger.info(f"DB_URL endpoint: {settings.db_url.split('@')[-1] if '@' in settings.db_url else 'Not set'}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"✗ Database initialization failed: {e}", exc_info=True)
        raise

    # Start background workers (skip during tests)
    if not os.environ.get("TESTING"):
        worker = build_media_worker()
        scheduler = build_trending_scheduler()
        worker.start()
        scheduler.start()
        _background.extend([worker, scheduler])
        logger.info("✓ Media worker and trending scheduler started")

    logger.info("Application startup sequence completed - server ready to accept requests")


@app.on_event("shutdown")
async def shutdown_event():
    while _background:
        _background.pop().stop(timeout=10)


@app.get("/health")
async def health():
    return {"status": "ok"}
