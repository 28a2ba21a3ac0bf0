from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "course-portal"
    app_env: str = "dev"
    ta_password: str = "change-me-in-production"
    storage_backend: Literal["disk", "memory"] = "disk"
    storage_dir: str = "uploads"
    metadata_path: str = "data/files-metadata.json"
    max_upload_size_bytes: int = 10 * 1024 * 1024
    max_request_body_bytes: int = 50 * 1024 * 1024
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PORTAL_")


@lru_cache
def get_settings() -> Settings:
    return Settings()
