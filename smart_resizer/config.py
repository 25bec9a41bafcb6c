"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""

    # Tables
    jobs_table: str = "smart_resizer_jobs"
    results_table: str = "smart_resizer_results"
    members_table: str = "client_members"

    # Object storage
    storage_backend: str = "supabase"  # "supabase" or "local"
    storage_bucket: str = "workflow-results"
    local_storage_dir: str = "/data/smart-resizer"
    public_base_url: str = "http://localhost:8002/files"

    # Upload validation
    max_image_dimension: int = 10000
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_image_formats: List[str] = ["JPEG", "PNG", "WEBP"]

    # Job processing
    queue_workers: int = 1
    format_concurrency: int = 2
    format_timeout_seconds: float = 60.0

    # Pricing tables (JSON file); built-in defaults when unset
    pricing_config_path: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    api_port: int = 8002

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
