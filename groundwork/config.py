from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os

class Settings(BaseSettings):
    # App Settings
    app_name: str = "Groundwork"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Test Mode - deterministic generation, no OpenAI calls
    test_mode: bool = False

    # Database - DATABASE_URL from the platform, fallback to SQLite for local
    database_url: Optional[str] = None

    # API Settings
    backend_host: str = "0.0.0.0"
    backend_port: int = int(os.getenv("PORT", "8000"))
    allowed_origins: str = "http://localhost:3000"

    # Generation collaborator
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    generation_timeout_seconds: float = 90.0
    generation_max_retries: int = 2

    # Grounding / fit
    grounding_threshold: float = 0.80
    grounding_max_rewrites: int = 2
    fit_policy: str = "weighted"  # linear | weighted
    page_usable_lines: int = 45  # body lines on one 11pt letter page
    generation_rate_limit: str = "30/minute"

    # Blob storage
    storage_backend: str = "local"  # local | s3
    local_storage_dir: str = "./storage"
    aws_s3_bucket: str = ""
    aws_s3_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    # Typesetting
    pdflatex_path: str = "pdflatex"
    pdflatex_timeout_seconds: float = 60.0

    # Render scheduler
    render_lease_seconds: int = 120
    render_max_attempts: int = 3
    render_job_retention_hours: int = 72
    worker_poll_interval: float = 2.0
    worker_max_idle_interval: float = 10.0
    reclaim_interval: float = 15.0

    # Optional Redis (queue transport + rate limiting)
    redis_url: str = ""

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-detect database URL
        if self.database_url is None:
            platform_db = os.getenv("DATABASE_URL")
            if platform_db:
                # SQLAlchemy async needs postgresql+asyncpg://
                if platform_db.startswith("postgres://"):
                    self.database_url = platform_db.replace("postgres://", "postgresql+asyncpg://", 1)
                elif platform_db.startswith("postgresql://"):
                    self.database_url = platform_db.replace("postgresql://", "postgresql+asyncpg://", 1)
                else:
                    self.database_url = platform_db
            else:
                # Fallback to local SQLite
                self.database_url = "sqlite+aiosqlite:///./groundwork.db"

    @property
    def allowed_origin_list(self) -> list:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

@lru_cache()
def get_settings() -> Settings:
    return Settings()
