from typing import List, Optional
from pydantic import BaseModel
from sqlmodel import Field, SQLModel

class ImageRecord(SQLModel, table=True):
    """A row of the images table; the id names the blobs on disk."""
    __tablename__ = "images"
    # ids are never reused
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    tags: str = ""

class UploadForm(BaseModel):
    tags: str
    image: bytes
    content_type: Optional[str] = None

class BackfillReport(BaseModel):
    scanned: int = 0
    created: int = 0
    skipped: int = 0
    failed: List[int] = []
