from typing import Iterator
import logging
from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser

from image_store.storage.metadata import MetadataStore
from image_store.storage.blobs import BlobStore
from image_store.image_service.models import UploadForm
from image_store.image_service.thumbnails import ThumbnailWorker, format_from_content_type
from image_store.exceptions import MalformedRequestException, PayloadTooLargeException, StoreException, BlobConflictException

log = logging.getLogger(__name__)

UPLOAD_FIELDS = {"tags", "image"}

# Room for the tags part and multipart framing on top of the image itself
FORM_ALLOWANCE_BYTES = 1024 * 1024

class StrictMultiPartParser(MultiPartParser):
    """Multipart parser that rejects text parts not valid in the form charset."""

    def on_part_end(self) -> None:
        part = self._current_part
        if part.file is None:
            try:
                bytes(part.data).decode(self._charset)
            except (UnicodeDecodeError, LookupError):
                raise MultiPartException(f"Field '{part.field_name}' is not valid {self._charset}")
        super().on_part_end()

async def _parse_form(request: Request):
    if not request.headers.get("content-type", "").lower().startswith("multipart/form-data"):
        return await request.form()
    parser = StrictMultiPartParser(request.headers, request.stream())
    try:
        return await parser.parse()
    except MultiPartException as e:
        raise MalformedRequestException(e.message)

async def read_upload_form(request: Request, max_bytes: int) -> UploadForm:
    """Parses a multipart upload holding exactly a `tags` text part and an `image` file part."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes + FORM_ALLOWANCE_BYTES:
        raise PayloadTooLargeException(max_bytes)

    form = await _parse_form(request)
    try:
        seen = {}
        for name, value in form.multi_items():
            if name not in UPLOAD_FIELDS:
                raise MalformedRequestException(f"Unexpected field '{name}'")
            if name in seen:
                raise MalformedRequestException(f"Field '{name}' given more than once")
            seen[name] = value

        missing = sorted(UPLOAD_FIELDS - set(seen))
        if missing:
            raise MalformedRequestException(f"Missing field(s): {', '.join(missing)}")

        tags = seen["tags"]
        if isinstance(tags, UploadFile):
            try:
                tags = (await tags.read()).decode("utf-8")
            except UnicodeDecodeError:
                raise MalformedRequestException("Field 'tags' is not valid UTF-8")

        image = seen["image"]
        if not isinstance(image, UploadFile):
            raise MalformedRequestException("Field 'image' must be a file")
        data = await image.read(max_bytes + 1)
        if len(data) > max_bytes:
            raise PayloadTooLargeException(max_bytes)

        return UploadForm(tags=tags, image=data, content_type=image.content_type)
    finally:
        await form.close()


class UploadPipeline:
    """
        Commits an upload in order: metadata row, then original blob, then a
        queued thumbnail. There is no transaction spanning the two stores;
        if the blob write fails the row stays behind as an orphan and is
        logged. The backfill skips orphans and retrieval answers 404 for them.
    """

    def __init__(self, db: MetadataStore, blobs: BlobStore, thumbnails: ThumbnailWorker):
        self.db = db
        self.blobs = blobs
        self.thumbnails = thumbnails

    async def upload(self, form: UploadForm) -> int:
        image_id = await run_in_threadpool(self.db.insert, form.tags)

        try:
            await run_in_threadpool(self.blobs.write_original, image_id, form.image)
        except (StoreException, BlobConflictException):
            log.error("Image %s has metadata but no original", image_id)
            raise

        self.thumbnails.dispatch(image_id, format_from_content_type(form.content_type))
        log.info("Saved image %s (%d bytes)", image_id, len(form.image))
        return image_id

def open_original(blobs: BlobStore, image_id: int) -> Iterator[bytes]:
    """Opens an original for streaming; only the blob's existence is checked."""
    return blobs.read_original(image_id)

def open_thumbnail(blobs: BlobStore, image_id: int) -> Iterator[bytes]:
    return blobs.read_thumbnail(image_id)
