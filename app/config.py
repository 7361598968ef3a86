"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Service
    service_host: str = "127.0.0.1"
    service_port: int = 8001
    log_level: str = "INFO"

    # External tools
    downloader_command: str = "yt-dlp"
    downloads_dir: str = "~/Downloads"

    # Job retention
    job_result_ttl_hours: int = 24
    job_sweep_interval_seconds: int = 600

    # Job supervision
    job_output_tail_chars: int = 64 * 1024  # 0 keeps all output
    job_timeout_seconds: Optional[float] = None
    job_terminate_grace_seconds: float = 5.0
    max_concurrent_jobs: int = 0  # 0 = unbounded

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
