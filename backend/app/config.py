from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "eventsnap-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "EventSnap")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/eventsnap_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")

    # Object storage (MinIO speaks the S3 API)
    s3_endpoint: str = os.getenv("S3_ENDPOINT", "http://minio:9000")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "minioadmin")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "minioadmin")
    s3_bucket_uploads: str = os.getenv("S3_BUCKET_UPLOADS", "eventsnap-uploads-dev")
    s3_presign_downloads: bool = os.getenv("S3_PRESIGN_DOWNLOADS", "0") == "1"
    s3_presign_expiry_seconds: int = int(os.getenv("S3_PRESIGN_EXPIRY_SECONDS", "3600"))

    # Upload pipeline
    upload_timeout_seconds: float = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "300"))
    upload_chunk_bytes: int = int(os.getenv("UPLOAD_CHUNK_BYTES", str(64 * 1024)))
    guest_max_upload_mb: float = float(os.getenv("GUEST_MAX_UPLOAD_MB", "200"))
    preview_max_px: int = int(os.getenv("PREVIEW_MAX_PX", "400"))
    preview_jpeg_quality: int = int(os.getenv("PREVIEW_JPEG_QUALITY", "80"))
    ffmpeg_bin: str = os.getenv("FFMPEG_BIN", "ffmpeg")
    transcode_job_timeout: int = int(os.getenv("TRANSCODE_JOB_TIMEOUT", "1800"))

    # Captioning collaborator (Ollama-compatible /api/generate)
    caption_url: str = os.getenv("CAPTION_URL", "http://localhost:11434/api/generate")
    caption_model: str = os.getenv("CAPTION_MODEL", "llava")
    caption_timeout_seconds: float = float(os.getenv("CAPTION_TIMEOUT_SECONDS", "10"))
    caption_default: str = os.getenv("CAPTION_DEFAULT", "Event memory")

    # Room broadcast relay (worker -> web processes)
    redis_relay_enabled: bool = os.getenv("REDIS_RELAY", "1") == "1"
    redis_relay_channel: str = os.getenv("REDIS_RELAY_CHANNEL", "eventsnap:rooms")

    # Client SDK defaults
    api_base_url: str = os.getenv("API_BASE_URL", "http://localhost:8000")
    ws_url: str = os.getenv("WS_URL", "ws://localhost:8000/ws")
    ws_ack_timeout_seconds: float = float(os.getenv("WS_ACK_TIMEOUT_SECONDS", "5"))

settings = Settings()
