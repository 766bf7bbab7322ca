from fastapi import Request
from image_store.storage.metadata import MetadataStore
from image_store.storage.blobs import BlobStore
from image_store.image_service.thumbnails import ThumbnailWorker
from image_store.image_service.service import UploadPipeline

def get_metadata_store(request: Request) -> MetadataStore:
    """Dependency provider for MetadataStore"""
    return request.app.state.db

def get_blob_store(request: Request) -> BlobStore:
    """Dependency provider for BlobStore"""
    return request.app.state.blobs

def get_thumbnail_worker(request: Request) -> ThumbnailWorker:
    """Dependency provider for ThumbnailWorker"""
    return request.app.state.thumbnails

def get_upload_pipeline(request: Request) -> UploadPipeline:
    """Dependency provider for UploadPipeline"""
    return request.app.state.pipeline
