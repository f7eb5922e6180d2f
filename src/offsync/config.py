from typing import Optional

from pydantic_settings import BaseSettings

MIN_PERIODIC_SYNC_MINUTES = 15


class Settings(BaseSettings):
    database_url: str = "sqlite:///./offsync.db"
    remote_base_url: str = "https://jsonplaceholder.typicode.com"
    remote_records_path: str = "/posts"
    remote_user_id: int = 1  # fixed field required by the remote schema
    remote_timeout_seconds: float = 10.0
    claim_lease_seconds: float = 60.0  # SYNCING claims older than this are released
    inter_record_delay_seconds: float = 0.1
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 30.0
    max_attempts_per_pass: int = 3
    periodic_sync_minutes: int = MIN_PERIODIC_SYNC_MINUTES
    connectivity_check_seconds: int = 30
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    log_level: str = "INFO"

    class Config:
        env_prefix = "OFFSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
