from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./images.db")
    images_dir: str = Field("images")

    thumbnail_size: int = Field(100)
    thumbnail_workers: int = Field(2)
    backfill_on_startup: bool = Field(False)

    # Hard cap on a single upload body
    max_upload_bytes: int = Field(20 * 1024 * 1024)

    log_level: str = Field("INFO")
    app_title: str = Field("Image Store")

    class Config:
        env_file = ".env"
        extra = "allow"  # tolerate unknown vars if needed

settings = Settings()
