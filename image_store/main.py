from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from starlette.concurrency import run_in_threadpool
from contextlib import asynccontextmanager
from pathlib import Path
import asyncio
import uvicorn
import logging

from image_store.storage.metadata import MetadataStore
from image_store.storage.blobs import BlobStore
from image_store.image_service.thumbnails import ThumbnailWorker
from image_store.image_service.service import UploadPipeline
from image_store.image_service.backfill import backfill_thumbnails
from image_store.dependencies.dependencies import get_metadata_store
from image_store.settings import settings
from image_store.routers.image_service import router as image_router
from image_store.exceptions import add_exception_handlers

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("image-store")

INDEX_PAGE = Path(__file__).resolve().parent / "static" / "index.html"

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Builds the stores, the thumbnail pool and the upload pipeline, and
        tears them down in reverse order.
    """
    # Initialize resources
    app.state.db = MetadataStore(settings.database_url)
    app.state.blobs = BlobStore(settings.images_dir)
    app.state.thumbnails = ThumbnailWorker(
        app.state.blobs,
        max_workers=settings.thumbnail_workers,
        size=(settings.thumbnail_size, settings.thumbnail_size),
    )
    app.state.pipeline = UploadPipeline(app.state.db, app.state.blobs, app.state.thumbnails)

    startup_backfill = None
    if settings.backfill_on_startup:
        startup_backfill = asyncio.create_task(
            backfill_thumbnails(app.state.db, app.state.blobs, app.state.thumbnails)
        )
    yield
    # Cleanup resources
    if startup_backfill is not None:
        await startup_backfill
    app.state.thumbnails.close()
    app.state.db.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Image Store Service",
)

# Add exception handlers
add_exception_handlers(app)

# CORS - Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/", response_class=HTMLResponse)
def index():
    """Upload page"""
    return HTMLResponse(INDEX_PAGE.read_text(encoding="utf-8"))

# Check Health
@app.get("/health")
async def health(db: MetadataStore = Depends(get_metadata_store)):
    images = await run_in_threadpool(db.count)
    return {"status": "ok", "images": images}

# Add the routers
app.include_router(image_router)

if __name__ == "__main__":
    uvicorn.run("image_store.main:app", host="0.0.0.0", port=8000, reload=True)
