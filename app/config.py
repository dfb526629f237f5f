"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Persistence backend: "memory" or "supabase"
    job_store_backend: str = "memory"
    jobs_table: str = "ai_jobs"
    subjects_table: str = "plantas"

    # Recognition worker
    worker_base_url: str = "http://localhost:8001"
    worker_token: Optional[str] = None
    worker_timeout_seconds: float = 300.0

    # Concurrency and retries
    max_concurrent_jobs: int = 3
    default_max_attempts: int = 3
    retry_base_delay_seconds: float = 30.0
    retry_max_delay_seconds: float = 3600.0

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_poll_interval_seconds: float = 5.0
    scheduler_batch_size: int = 10

    # Job record retention
    processing_log_read_limit: int = 50
    processing_log_retention: int = 500
    error_history_retention: int = 100

    log_level: str = "INFO"
    compute_port: int = 8002

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
