# pyright: reportCallIssue=false, reportConstantRedefinition=false
# pyright: reportGeneralTypeIssues=false, reportUnnecessaryIsInstance=false
from typing import Self
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator, ValidationInfo
import os
import logging

from .logging_utils import install_log_sanitizer

install_log_sanitizer()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # S3/MinIO settings (one bucket per deployment, created out of band)
    S3_ENDPOINT: str = "http://minio:9000"
    S3_ACCESS_KEY: str | None = Field(
        default=None,
        description="S3 access key - MUST be provided via environment variable",
    )
    S3_SECRET_KEY: str | None = Field(
        default=None,
        description="S3 secret key - MUST be provided via environment variable",
    )
    S3_BUCKET: str = "lighthouse-notes"
    S3_REGION: str = "us-east-1"
    # TLS between the API and the object store
    S3_NETWORK_ENCRYPTION: bool = False

    # Database - Railway provides postgresql://, we need postgresql+psycopg2://
    DATABASE_URL: str = Field(
        default="sqlite:///./lighthouse.db",
        description="SQLAlchemy connection URL; defaults to a local sqlite file",
        min_length=1,
    )

    # Placeholder prefix authors use for images that have no URL yet
    LOCAL_ASSET_MARKER: str = ".path/"

    # Streaming verification
    READ_CHUNK_SIZE: int = Field(default=64 * 1024, gt=0)
    SPOOL_MAX_BYTES: int = Field(default=8 * 1024 * 1024, gt=0)
    VERIFY_AFTER_WRITE: bool = True

    LOG_LEVEL: str = "INFO"

    @field_validator("DATABASE_URL")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+psycopg2:// for SQLAlchemy"""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("S3_ENDPOINT")
    @classmethod
    def strip_endpoint(cls, v: str) -> str:
        return (v or "").strip().rstrip("/")

    @field_validator("LOCAL_ASSET_MARKER")
    @classmethod
    def marker_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("LOCAL_ASSET_MARKER must not be blank")
        return v.strip()

    @field_validator("S3_ACCESS_KEY", "S3_SECRET_KEY")
    @classmethod
    def validate_secrets_not_default(cls, v: str | None, info: ValidationInfo):
        """Prevent use of weak/default credentials in production."""
        if v is None:
            return v

        env = os.getenv("ENV", "development").lower()
        weak_values = {"admin", "minioadmin", "root", "user", "changeme", "password"}
        if v.lower() in weak_values:
            if env == "production":
                raise ValueError(
                    f"{info.field_name} uses weak/default value in production"
                )
            logging.warning(
                "%s uses default value - override via environment variable",
                info.field_name,
            )
        return v

    @model_validator(mode="after")
    def ensure_bucket_named(self) -> Self:
        if not self.S3_BUCKET:
            raise ValueError("S3_BUCKET (storage bucket name) is required")
        return self


try:
    settings = Settings()  # pyright: ignore[reportCallIssue]
except Exception as exc:
    logging.critical("Failed to load settings: %s", exc)
    raise
