import os
import tempfile
from pathlib import Path
from typing import Iterator
import logging

from image_store.exceptions import BlobConflictException, ImageNotFoundException, StoreException

log = logging.getLogger(__name__)

# -------------------------
# Blob Store
# -------------------------
class BlobStore:
    """
        Filesystem storage for originals and thumbnails, named after the
        metadata id. Originals are write-once; thumbnails are replaced
        atomically.
    """

    def __init__(self, root, chunk_size: int = 64 * 1024):
        self.root = Path(root)
        self.chunk_size = chunk_size
        log.info("Initialized blob store at %s", self.root)

    def ensure_root(self):
        # exist_ok covers concurrent first uploads racing to create it
        self.root.mkdir(parents=True, exist_ok=True)

    def original_filename(self, image_id: int) -> str:
        return f"{image_id}.jpg"

    def thumbnail_filename(self, image_id: int) -> str:
        return f"{image_id}_thumb.jpg"

    def original_path(self, image_id: int) -> Path:
        return self.root / self.original_filename(image_id)

    def thumbnail_path(self, image_id: int) -> Path:
        return self.root / self.thumbnail_filename(image_id)

    def has_original(self, image_id: int) -> bool:
        return self.original_path(image_id).is_file()

    def has_thumbnail(self, image_id: int) -> bool:
        return self.thumbnail_path(image_id).is_file()

    def write_original(self, image_id: int, data: bytes) -> Path:
        self.ensure_root()
        path = self.original_path(image_id)
        try:
            with path.open("xb") as f:
                f.write(data)
        except FileExistsError:
            raise BlobConflictException(image_id)
        except OSError as e:
            log.error("Writing original %s failed: %s", path, e)
            path.unlink(missing_ok=True)
            raise StoreException(f"Failed to write image {image_id}: {e}")
        log.debug("Wrote original %s (%d bytes)", path, len(data))
        return path

    def write_thumbnail(self, image_id: int, data: bytes) -> Path:
        self.ensure_root()
        path = self.thumbnail_path(image_id)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{image_id}_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as e:
            log.error("Writing thumbnail %s failed: %s", path, e)
            Path(tmp).unlink(missing_ok=True)
            raise StoreException(f"Failed to write thumbnail {image_id}: {e}")
        log.debug("Wrote thumbnail %s (%d bytes)", path, len(data))
        return path

    def read_original(self, image_id: int) -> Iterator[bytes]:
        """Existence is checked now; the file is only opened once iteration starts."""
        path = self.original_path(image_id)
        if not path.is_file():
            raise ImageNotFoundException(image_id)
        return self._iter_file(path)

    def read_thumbnail(self, image_id: int) -> Iterator[bytes]:
        path = self.thumbnail_path(image_id)
        if not path.is_file():
            raise ImageNotFoundException(image_id)
        return self._iter_file(path)

    def load_original(self, image_id: int) -> bytes:
        path = self.original_path(image_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ImageNotFoundException(image_id)

    def _iter_file(self, path: Path) -> Iterator[bytes]:
        with path.open("rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
