from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CHUNK_SIZE = 80 * 1024  # 80KB


class StorageConfig(BaseModel):
    """Everything the content store needs to know about its filesystem."""

    model_config = ConfigDict(frozen=True)

    base_dir: Path
    content_file_name: str = "content.bin"
    metadata_file_name: str = "metadata.json"
    chunk_size: int = Field(default=CHUNK_SIZE, gt=0)

    @property
    def temp_file_name(self) -> str:
        return f"{self.content_file_name}.tmp"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FILE_STORAGE_", env_file=None, extra="ignore")

    port: int = 8001
    data_dir: str = "/data"
    files_dir: str = "/data/files"
    content_file_name: str = "content.bin"
    metadata_file_name: str = "metadata.json"
    chunk_size: int = CHUNK_SIZE

    # empty list = any content type is accepted
    allowed_content_types: list[str] = Field(default_factory=list)
    default_page_size: int = 20
    max_page_size: int = 100

    log_level: str = "INFO"

    @property
    def db_url(self) -> str:
        # sqlite file
        return f"sqlite:///{self.data_dir.rstrip('/')}/file_storage.db"

    def storage_config(self) -> StorageConfig:
        return StorageConfig(
            base_dir=Path(self.files_dir),
            content_file_name=self.content_file_name,
            metadata_file_name=self.metadata_file_name,
            chunk_size=self.chunk_size,
        )


settings = Settings()
