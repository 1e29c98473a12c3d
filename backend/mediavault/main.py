"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from mediavault.config import settings
from mediavault.database import engine, get_db
from mediavault.errors import (
    AuthorizationError,
    MediaVaultError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from mediavault.logging_config import setup_logging
from mediavault.models import Base

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, create tables, report the storage root."""
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    from mediavault.dependencies import get_storage_root
    root = get_storage_root()
    logger.info("Upload directory: %s (listing mode: %s)", root.path, settings.LISTING_MODE)
    if not settings.ADMIN_KEY:
        logger.warning("ADMIN_KEY is not set; admin routes will reject every request")

    yield

    await engine.dispose()


app = FastAPI(
    title="Media Vault API",
    version="1.0.0",
    description="Upload intake and storage management for user-submitted media.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "x-admin-key"],
)


async def handle_vault_error(request: Request, exc: MediaVaultError):
    """Map the error taxonomy onto HTTP. 5xx detail stays in the log."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        message = exc.public_message
    else:
        message = exc.message
    return JSONResponse(status_code=exc.status_code, content={"detail": message})


for _error_class in (ValidationError, NotFoundError, AuthorizationError, StorageError):
    app.add_exception_handler(_error_class, handle_vault_error)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    """Malformed form or body fields are a 400, with the first problem spelled out."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg', 'invalid')}" if field else first.get("msg", "invalid")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"detail": message})


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    endpoints = {
        "upload": "/api/upload (POST - single file)",
        "uploadMultiple": "/api/upload/multiple (POST - multiple files)",
        "eventVideos": "/api/event-videos/upload (POST - event video)",
        "usage": "/api/usage (GET)",
        "admin": {
            "files": "/api/admin/files (GET - requires x-admin-key header)",
            "download": "/api/admin/download/:filename (GET - requires x-admin-key header)",
            "delete": "/api/admin/files/:filename (DELETE - requires x-admin-key header)",
        },
    }
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected", "endpoints": endpoints}
    except Exception as e:
        logger.error("Health check failed", exc_info=True)
        return {"status": "error", "database": str(e), "endpoints": endpoints}


# Register routers
from mediavault.routes.uploads import router as uploads_router
from mediavault.routes.event_videos import router as event_videos_router
from mediavault.routes.admin import router as admin_router
from mediavault.routes.usage import router as usage_router
app.include_router(uploads_router)
app.include_router(event_videos_router)
app.include_router(admin_router)
app.include_router(usage_router)
