from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "facility_docs"
    db_username: str = "facility_docs"
    db_password: str = "secret"

    max_upload_bytes: int = 10 * 1024 * 1024
    upload_chunk_bytes: int = 64 * 1024

    staging_dir: str = "/app/uploads/staging"
    storage_root: str = "/app/uploads/documents"
    staging_max_age_seconds: int = 3600
