from typing import Iterator
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select
import logging

from image_store.image_service.models import ImageRecord
from image_store.exceptions import StoreException

log = logging.getLogger(__name__)

# -------------------------
# Metadata Store
# -------------------------
class MetadataStore:
    """Insert-only table of image ids and their tags."""

    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            # Shared across the request thread pool
            connect_args["check_same_thread"] = False

        self.engine = create_engine(database_url, connect_args=connect_args)
        log.info("Initialized metadata store")

        # Ensure table exists at initialization
        self.ensure_schema()

    def ensure_schema(self):
        try:
            SQLModel.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            log.error("Failed to create images table: %s", e)
            raise StoreException(f"Failed to prepare metadata store: {e}")

    def insert(self, tags: str) -> int:
        record = ImageRecord(tags=tags)
        try:
            with Session(self.engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
        except SQLAlchemyError as e:
            log.error("Metadata insert failed: %s", e)
            raise StoreException(f"Failed to save image metadata: {e}")
        log.debug("Inserted metadata %s", record.id)
        return record.id

    def count(self) -> int:
        try:
            with Session(self.engine) as session:
                return session.exec(select(func.count()).select_from(ImageRecord)).one()
        except SQLAlchemyError as e:
            log.error("Metadata count failed: %s", e)
            raise StoreException(f"Failed to count images: {e}")

    def list_ids(self, batch_size: int = 500) -> Iterator[int]:
        """
            Yields every id up to the highest one present when called, in
            ascending order, fetching `batch_size` ids per query.
        """
        try:
            with Session(self.engine) as session:
                high = session.exec(select(func.max(ImageRecord.id))).one()
        except SQLAlchemyError as e:
            log.error("Metadata scan failed: %s", e)
            raise StoreException(f"Failed to list images: {e}")
        return self._iter_ids(high or 0, batch_size)

    def _iter_ids(self, high: int, batch_size: int) -> Iterator[int]:
        last = 0
        while last < high:
            try:
                with Session(self.engine) as session:
                    batch = session.exec(
                        select(ImageRecord.id)
                        .where(ImageRecord.id > last, ImageRecord.id <= high)
                        .order_by(ImageRecord.id)
                        .limit(batch_size)
                    ).all()
            except SQLAlchemyError as e:
                log.error("Metadata scan failed after id %s: %s", last, e)
                raise StoreException(f"Failed to list images: {e}")
            if not batch:
                return
            yield from batch
            last = batch[-1]

    def close(self):
        self.engine.dispose()
        log.info("Closed metadata store")
