"""
    Derives thumbnails for every stored image that does not have one yet.

    Run against the configured database and images directory with:

        image-store-backfill
"""
import asyncio
import logging
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from image_store.storage.metadata import MetadataStore
from image_store.storage.blobs import BlobStore
from image_store.image_service.models import BackfillReport
from image_store.image_service.thumbnails import ThumbnailWorker
from image_store.exceptions import APIException
from image_store.settings import settings

log = logging.getLogger(__name__)

async def backfill_thumbnails(db: MetadataStore, blobs: BlobStore, thumbnails: ThumbnailWorker) -> BackfillReport:
    """
        Scans the metadata store and derives each missing thumbnail. A
        failure for one id (missing or undecodable original, disk error) is
        logged and recorded in the report; the scan carries on. Safe to run
        repeatedly and alongside live uploads.
    """
    report = BackfillReport()
    ids = await run_in_threadpool(db.list_ids)

    async for image_id in iterate_in_threadpool(ids):
        report.scanned += 1
        if await run_in_threadpool(blobs.has_thumbnail, image_id):
            report.skipped += 1
            continue
        try:
            await thumbnails.derive(image_id)
        except APIException as e:
            log.warning("Thumbnail backfill failed for image %s: %s", image_id, e.detail)
            report.failed.append(image_id)
            continue
        except Exception as e:
            log.error("Thumbnail backfill failed for image %s: %s", image_id, e, exc_info=e)
            report.failed.append(image_id)
            continue
        report.created += 1

    log.info(
        "Thumbnail backfill done: scanned=%d created=%d skipped=%d failed=%d",
        report.scanned, report.created, report.skipped, len(report.failed),
    )
    return report

async def run_backfill() -> BackfillReport:
    db = MetadataStore(settings.database_url)
    blobs = BlobStore(settings.images_dir)
    thumbnails = ThumbnailWorker(
        blobs,
        max_workers=settings.thumbnail_workers,
        size=(settings.thumbnail_size, settings.thumbnail_size),
    )
    try:
        log.info("Backfilling thumbnails for %d images", db.count())
        return await backfill_thumbnails(db, blobs, thumbnails)
    finally:
        thumbnails.close()
        db.close()

def main():
    logging.basicConfig(level=settings.log_level)
    report = asyncio.run(run_backfill())
    print(report.model_dump_json())
    return 1 if report.failed else 0

if __name__ == "__main__":
    raise SystemExit(main())
