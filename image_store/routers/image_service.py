from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
import logging

from image_store.storage.metadata import MetadataStore
from image_store.storage.blobs import BlobStore
from image_store.dependencies.dependencies import (
    get_metadata_store,
    get_blob_store,
    get_thumbnail_worker,
    get_upload_pipeline,
)
from image_store.image_service.service import UploadPipeline, read_upload_form, open_original, open_thumbnail
from image_store.image_service.backfill import backfill_thumbnails
from image_store.image_service.thumbnails import ThumbnailWorker
from image_store.image_service.models import BackfillReport
from image_store.settings import settings

log = logging.getLogger(__name__)

router = APIRouter(
    tags=["image-store"]
)

@router.post("/upload", response_class=PlainTextResponse)
async def upload_image(
    request: Request,
    pipeline: UploadPipeline = Depends(get_upload_pipeline)
):
    """Stores an image and its tags, then queues its thumbnail."""
    form = await read_upload_form(request, max_bytes=settings.max_upload_bytes)
    image_id = await pipeline.upload(form)
    return PlainTextResponse(
        "Ok",
        headers={"X-Image-Id": str(image_id), "Location": f"/{image_id}"},
    )

@router.post("/thumbnails/backfill", response_model=BackfillReport)
async def backfill(
    db: MetadataStore = Depends(get_metadata_store),
    blobs: BlobStore = Depends(get_blob_store),
    thumbnails: ThumbnailWorker = Depends(get_thumbnail_worker)
):
    """Derives every missing thumbnail and reports what was done."""
    return await backfill_thumbnails(db, blobs, thumbnails)

@router.get("/{image_id}")
def download_image(
    image_id: int,
    blobs: BlobStore = Depends(get_blob_store)
):
    """Streams the original image as an attachment."""
    body = open_original(blobs, image_id)
    return StreamingResponse(
        body,
        media_type="image/jpeg",
        headers={"Content-Disposition": f"attachment; filename={blobs.original_filename(image_id)}"},
    )

@router.get("/{image_id}/thumbnail")
def download_thumbnail(
    image_id: int,
    blobs: BlobStore = Depends(get_blob_store)
):
    """Streams the thumbnail, once it has been derived."""
    body = open_thumbnail(blobs, image_id)
    return StreamingResponse(
        body,
        media_type="image/jpeg",
        headers={"Content-Disposition": f"attachment; filename={blobs.thumbnail_filename(image_id)}"},
    )
