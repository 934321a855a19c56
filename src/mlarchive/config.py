from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    archive_path: str = ".data/archive.mbox"
    archive_index_path: str = ".data/archive_index.db"
    archive_url: str = ""
    resolve_out_of_order: bool = False

    log_level: str = "INFO"
    log_json: bool = True
    api_retry_max_attempts: int = 3
    api_retry_base_delay_seconds: float = 1.0
    api_retry_max_delay_seconds: float = 8.0

    @property
    def archive_file(self) -> Path:
        return Path(self.archive_path)

    @property
    def archive_index_file(self) -> Path:
        return Path(self.archive_index_path)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
