import pytest
from fastapi.testclient import TestClient

from image_store.main import app
from image_store.settings import settings
from image_store.storage.metadata import MetadataStore
from image_store.storage.blobs import BlobStore
from image_store.image_service.thumbnails import ThumbnailWorker


@pytest.fixture(scope="function")
def test_settings(tmp_path, monkeypatch):
    """Point the app at a throwaway database and images directory."""
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'images.db'}")
    monkeypatch.setattr(settings, "images_dir", str(tmp_path / "images"))
    monkeypatch.setattr(settings, "backfill_on_startup", False)
    return settings


@pytest.fixture(scope="function")
def test_client(test_settings):
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="function")
def metadata_store(tmp_path):
    db = MetadataStore(f"sqlite:///{tmp_path / 'meta.db'}")
    yield db
    db.close()


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    return BlobStore(tmp_path / "blobs")


@pytest.fixture(scope="function")
def thumbnail_worker(blob_store):
    worker = ThumbnailWorker(blob_store, max_workers=2)
    yield worker
    worker.close()
