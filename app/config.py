from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SHORTS_ASSEMBLER_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "shorts-assembler"
    host: str = "0.0.0.0"
    port: int = 3000

    # Job workspaces and the static prefix they are served under
    workspace_root: str = "./tmp"
    public_base_url: str = ""
    artifact_path_prefix: str = "/tmp"

    # Codec
    ffmpeg_binary: str = "ffmpeg"
    ffmpeg_timeout: float = 600.0
    max_concurrent_encodes: int = 2
    segment_width: int = 720
    segment_height: int = 1280
    default_duration_per_image: float = 3.0

    # Asset downloads
    max_parallel_fetches: int = 4
    download_connect_timeout: float = 10.0
    download_timeout: float = 60.0

    # Publishing
    upload_endpoint: str = (
        "https://www.googleapis.com/upload/youtube/v3/videos?uploadType=resumable&part=snippet,status"
    )
    upload_timeout: float = 600.0
    default_privacy_status: str = "public"

    # Reclamation
    cleanup_enabled: bool = True
    retention_minutes: float = 60.0
    cleanup_interval_minutes: float = 30.0
    lease_ttl_minutes: float = 240.0

    ledger_path: str = "./published.json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
