from concurrent.futures import Future, ThreadPoolExecutor, wait
from io import BytesIO
from typing import Optional, Tuple
import asyncio
import logging
import threading
from PIL import Image, ImageOps, UnidentifiedImageError

from image_store.storage.blobs import BlobStore
from image_store.exceptions import UnsupportedFormatException

log = logging.getLogger(__name__)

THUMBNAIL_SIZE = (100, 100)

# Pillow raises DecompressionBombError (not an OSError) past MAX_IMAGE_PIXELS
DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError)

# Pillow format names for the content types browsers send
FORMAT_MAP = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
}

def format_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    return FORMAT_MAP.get(content_type.split(";")[0].strip().lower())

def _open_image(data: bytes, format_hint: Optional[str]) -> Image.Image:
    formats = [format_hint] if format_hint else None
    img = Image.open(BytesIO(data), formats=formats)
    img.load()
    return img

def derive_thumbnail(
    data: bytes,
    format_hint: Optional[str] = None,
    size: Tuple[int, int] = THUMBNAIL_SIZE,
) -> bytes:
    """
        Shrinks an encoded image to fit inside `size`, keeping its aspect
        ratio, and returns it as JPEG bytes. Images already inside the box
        keep their dimensions.

        `format_hint` is tried first; if it is missing or wrong the format
        is sniffed from the bytes.
    """
    try:
        img = _open_image(data, format_hint)
    except DECODE_ERRORS as e:
        if not format_hint:
            raise UnsupportedFormatException(f"Cannot decode image: {e}")
        log.debug("Decoding as %s failed, sniffing format instead", format_hint)
        try:
            img = _open_image(data, None)
        except DECODE_ERRORS as e:
            raise UnsupportedFormatException(f"Cannot decode image: {e}")

    img = ImageOps.exif_transpose(img)
    img.thumbnail(size)

    buf = BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=88)
    return buf.getvalue()


class ThumbnailWorker:
    """
        Bounded thread pool that derives thumbnails away from the event loop.
    """

    def __init__(self, blobs: BlobStore, max_workers: int = 2, size: Tuple[int, int] = THUMBNAIL_SIZE):
        self.blobs = blobs
        self.size = size
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="thumbnail")
        self._pending = set()
        self._lock = threading.Lock()
        log.info("Initialized thumbnail worker with %d threads", max_workers)

    def generate(self, image_id: int, format_hint: Optional[str] = None):
        data = self.blobs.load_original(image_id)
        self.blobs.write_thumbnail(image_id, derive_thumbnail(data, format_hint, self.size))
        log.info("Generated thumbnail for image %s", image_id)

    def dispatch(self, image_id: int, format_hint: Optional[str] = None) -> Future:
        """Queues a thumbnail without waiting for it; failures are only logged."""
        future = self.executor.submit(self._generate_logged, image_id, format_hint)
        with self._lock:
            self._pending.add(future)

        def done(f: Future):
            with self._lock:
                self._pending.discard(f)

        future.add_done_callback(done)
        return future

    def _generate_logged(self, image_id: int, format_hint: Optional[str]):
        try:
            self.generate(image_id, format_hint)
        except Exception as e:
            log.error("Thumbnail for image %s failed, left for backfill: %s", image_id, e, exc_info=e)
            raise

    async def derive(self, image_id: int, format_hint: Optional[str] = None):
        await asyncio.wrap_future(self.executor.submit(self.generate, image_id, format_hint))

    def join(self, timeout: Optional[float] = None) -> bool:
        """Waits for dispatched thumbnails; returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self):
        self.join()
        self.executor.shutdown(wait=True)
        log.info("Closed thumbnail worker")
