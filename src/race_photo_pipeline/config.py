"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    admin_token: str
    storage_bucket: str = "photos"
    openai_api_key: str | None = None
    openai_model: str = "gpt-5.2"
    aws_region: str = "eu-west-1"
    rekognition_collection_id: str = "race-photo-faces"
    cloud_ocr_provider: str = "rekognition"
    easyocr_languages: str = "en"
    local_ocr_enabled: bool = True
    processing_max_concurrent: int = 4
    quality_threshold: int = 30
    auto_edit_enabled: bool = True
    face_index_enabled: bool = True
    face_match_threshold: float = 85.0
    label_detection_enabled: bool = True
    label_max_labels: int = 15
    label_min_confidence: float = 60.0
    credits_per_photo_lite: int = 1
    credits_per_photo_premium: int = 2
    watermark_text: str = "PREVIEW"
    clustering_webhook_url: str | None = None
    clustering_delay_seconds: float = 30.0
    sse_heartbeat_seconds: float = 30.0
    session_retention_seconds: float = 300.0
    log_level: str = "INFO"
    http_host: str = "0.0.0.0"  # noqa: S104
    http_port: int = 8000
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_languages(raw: str | None) -> list[str]:
    """Parse a comma-separated EasyOCR language list."""
    if raw is None:
        return ["en"]
    languages = [chunk.strip() for chunk in raw.split(",") if chunk.strip()]
    return languages or ["en"]
