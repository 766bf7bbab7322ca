import io
import pytest
from PIL import Image
from starlette.datastructures import FormData, Headers, UploadFile

from image_store.image_service import service
from image_store.image_service.models import UploadForm
from image_store.exceptions import (
    MalformedRequestException,
    PayloadTooLargeException,
    StoreException,
    BlobConflictException,
)


def make_jpeg_bytes():
    """Generate a simple valid JPEG in-memory."""
    img = Image.new("RGB", (200, 50), color="red")
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


def upload_file(data, filename="cat.jpg", content_type="image/jpeg"):
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


def make_request(mocker, items, content_length=None):
    request = mocker.Mock()
    request.headers = {"content-length": str(content_length)} if content_length else {}
    request.form = mocker.AsyncMock(return_value=FormData(items))
    return request


# ------------------------------
# read_upload_form
# ------------------------------

@pytest.mark.asyncio
async def test_read_upload_form_ok(mocker):
    data = make_jpeg_bytes()
    request = make_request(mocker, [("tags", "cat,orange"), ("image", upload_file(data))])

    form = await service.read_upload_form(request, max_bytes=1024 * 1024)

    assert form.tags == "cat,orange"
    assert form.image == data
    assert form.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_read_upload_form_tags_as_file_part(mocker):
    tags = upload_file("chat, 橙色".encode("utf-8"), filename="tags.txt", content_type="text/plain")
    request = make_request(mocker, [("tags", tags), ("image", upload_file(b"img"))])

    form = await service.read_upload_form(request, max_bytes=1024)
    assert form.tags == "chat, 橙色"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "items",
    [
        [("image", "placeholder")],
        [("tags", "cat")],
        [],
        [("tags", "cat"), ("image", "placeholder"), ("extra", "x")],
        [("tags", "cat"), ("tags", "dog"), ("image", "placeholder")],
        [("tags", "cat"), ("image", "not a file")],
    ],
)
async def test_read_upload_form_malformed(mocker, items):
    items = [
        (name, upload_file(b"img") if value == "placeholder" else value)
        for name, value in items
    ]
    request = make_request(mocker, items)
    with pytest.raises(MalformedRequestException):
        await service.read_upload_form(request, max_bytes=1024)


@pytest.mark.asyncio
async def test_read_upload_form_invalid_utf8_tags(mocker):
    tags = upload_file(b"\xff\xfe\xfa", filename="tags.txt", content_type="text/plain")
    request = make_request(mocker, [("tags", tags), ("image", upload_file(b"img"))])
    with pytest.raises(MalformedRequestException):
        await service.read_upload_form(request, max_bytes=1024)


@pytest.mark.asyncio
async def test_read_upload_form_declared_length_too_large(mocker):
    request = make_request(mocker, [], content_length=1024 + service.FORM_ALLOWANCE_BYTES + 1)
    with pytest.raises(PayloadTooLargeException):
        await service.read_upload_form(request, max_bytes=1024)
    request.form.assert_not_called()


@pytest.mark.asyncio
async def test_read_upload_form_image_at_limit_with_framing(mocker):
    # declared length counts the tags part and boundaries too
    data = b"x" * 1024
    request = make_request(mocker, [("tags", "cat"), ("image", upload_file(data))], content_length=1024 + 300)

    form = await service.read_upload_form(request, max_bytes=1024)
    assert form.image == data


@pytest.mark.asyncio
async def test_read_upload_form_image_too_large(mocker):
    request = make_request(mocker, [("tags", ""), ("image", upload_file(b"x" * 11))])
    with pytest.raises(PayloadTooLargeException):
        await service.read_upload_form(request, max_bytes=10)


# ------------------------------
# UploadPipeline
# ------------------------------

@pytest.mark.asyncio
async def test_upload_commits_in_order(mocker):
    calls = []
    mock_db = mocker.Mock()
    mock_blobs = mocker.Mock()
    mock_thumbnails = mocker.Mock()
    mock_db.insert.side_effect = lambda tags: calls.append("insert") or 7
    mock_blobs.write_original.side_effect = lambda image_id, data: calls.append("write")
    mock_thumbnails.dispatch.side_effect = lambda image_id, hint: calls.append("dispatch")

    pipeline = service.UploadPipeline(mock_db, mock_blobs, mock_thumbnails)
    image_id = await pipeline.upload(UploadForm(tags="cat", image=b"abc", content_type="image/png"))

    assert image_id == 7
    assert calls == ["insert", "write", "dispatch"]
    mock_db.insert.assert_called_once_with("cat")
    mock_blobs.write_original.assert_called_once_with(7, b"abc")
    mock_thumbnails.dispatch.assert_called_once_with(7, "PNG")


@pytest.mark.asyncio
async def test_upload_store_error_writes_nothing(mocker):
    mock_db = mocker.Mock()
    mock_blobs = mocker.Mock()
    mock_thumbnails = mocker.Mock()
    mock_db.insert.side_effect = StoreException("database is locked")

    pipeline = service.UploadPipeline(mock_db, mock_blobs, mock_thumbnails)
    with pytest.raises(StoreException):
        await pipeline.upload(UploadForm(tags="cat", image=b"abc"))

    mock_blobs.write_original.assert_not_called()
    mock_thumbnails.dispatch.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [StoreException("disk full"), BlobConflictException(3)])
async def test_upload_blob_failure_leaves_orphan(mocker, caplog, error):
    mock_db = mocker.Mock()
    mock_blobs = mocker.Mock()
    mock_thumbnails = mocker.Mock()
    mock_db.insert.return_value = 3
    mock_blobs.write_original.side_effect = error

    pipeline = service.UploadPipeline(mock_db, mock_blobs, mock_thumbnails)
    with pytest.raises(type(error)):
        await pipeline.upload(UploadForm(tags="cat", image=b"abc"))

    mock_thumbnails.dispatch.assert_not_called()
    assert "Image 3 has metadata but no original" in caplog.text


@pytest.mark.asyncio
async def test_upload_with_real_stores(metadata_store, blob_store, thumbnail_worker):
    data = make_jpeg_bytes()
    pipeline = service.UploadPipeline(metadata_store, blob_store, thumbnail_worker)

    first = await pipeline.upload(UploadForm(tags="cat,orange", image=data, content_type="image/jpeg"))
    second = await pipeline.upload(UploadForm(tags="", image=data))

    assert (first, second) == (1, 2)
    assert b"".join(service.open_original(blob_store, first)) == data
    assert thumbnail_worker.join(timeout=10)
    assert blob_store.has_thumbnail(first) and blob_store.has_thumbnail(second)
