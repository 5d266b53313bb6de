from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "tierstore"
    db_username: str = "tierstore"
    db_password: str = "secret"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    max_sync_attempts: int = 3
    sync_poll_interval_seconds: int = 5
    sync_claim_timeout_seconds: int = 900
    sync_retention_days: int = 7

    cache_ttl_seconds: int = 604800
    cache_warm_limit: int = 50
    cache_max_bytes: int = 0

    discovery_high_confidence: float = 0.75
    discovery_medium_confidence: float = 0.50
    discovery_batch_size: int = 10
    discovery_max_chars: int = 4000
    discovery_claim_timeout_seconds: int = 900
    discovery_max_attempts: int = 3
    discovery_auto_accept: bool = False

    storage_local_root: str = "/app/storage/local"
    storage_cache_root: str = "/app/storage/cache"
    storage_collab_root: str = "/app/storage/collab"
    storage_local_base_url: str = ""
    storage_cloud_provider: str = "local"
    storage_cloud_root: str = "/app/storage/cloud"
    storage_cdn_provider: str = "none"
    storage_cdn_root: str = "/app/storage/cdn"

    minio_endpoint: str = "localhost:9000"
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_secure: bool = False
    minio_cloud_bucket: str = "tierstore-cloud"
    minio_cdn_bucket: str = "tierstore-cdn"
    minio_presigned_expiry_seconds: int = 3600
    minio_quota_bytes: int = 0
    cdn_base_url: str = ""

    pdf_engine: str = "pdfplumber"

    ai_provider: str = "example"
    ai_openai_api_key: str = ""
    ai_openai_model_name: str = "gpt-4o-mini"
    ai_openai_timeout_seconds: int = 30
    ai_openai_temperature: float = 0.1
    ai_openai_compatible_api_key: str = ""
    ai_openai_compatible_model_name: str = ""
    ai_openai_compatible_base_url: str = ""
    ai_openai_compatible_timeout_seconds: int = 30
    ai_openrouter_api_key: str = ""
    ai_openrouter_model_name: str = ""
    ai_openrouter_timeout_seconds: int = 30
    ai_ollama_api_key: str = "ollama"
    ai_ollama_model_name: str = ""
    ai_ollama_timeout_seconds: int = 120
