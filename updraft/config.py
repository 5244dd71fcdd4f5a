"""
Application configuration. Loads from environment variables.
Secrets and sensitive config must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache
from typing import Optional


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "Updraft"
    debug: bool = False

    # Security
    admin_token: str = ""  # Required for /api/bundles/* endpoints

    # Object storage: "memory" (dev/tests) or "s3"
    storage_backend: str = "memory"
    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_endpoint_url: Optional[str] = None  # R2, MinIO, localstack

    # CDN: "none" or "cloudfront"
    cdn_backend: str = "none"
    cloudfront_distribution_id: str = ""

    # Resolution routes are cached by the CDN under this prefix
    api_base_path: str = "/api/check-update"
    # Origin used to turn a bundle's storage_uri into a downloadable file_url
    public_base_url: str = ""

    # Partition documents must revalidate so the CDN never serves a stale index
    document_cache_control: str = "max-age=0, no-cache, must-revalidate"

    # Migrations
    migration_ledger_key: str = "migrate.json"

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        self.admin_token = os.getenv("ADMIN_TOKEN", "")

        self.storage_backend = os.getenv("STORAGE_BACKEND", self.storage_backend).lower()
        self.s3_bucket = os.getenv("S3_BUCKET", "")
        self.s3_region = os.getenv("S3_REGION", self.s3_region)
        self.s3_endpoint_url = os.getenv("S3_ENDPOINT_URL") or None

        self.cdn_backend = os.getenv("CDN_BACKEND", self.cdn_backend).lower()
        self.cloudfront_distribution_id = os.getenv("CLOUDFRONT_DISTRIBUTION_ID", "")

        # Normalize: leading slash, no trailing slash
        base_path = os.getenv("API_BASE_PATH", self.api_base_path).strip() or self.api_base_path
        self.api_base_path = "/" + base_path.strip("/")
        self.public_base_url = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

        self.document_cache_control = os.getenv(
            "DOCUMENT_CACHE_CONTROL", self.document_cache_control
        )
        self.migration_ledger_key = os.getenv(
            "MIGRATION_LEDGER_KEY", self.migration_ledger_key
        )
