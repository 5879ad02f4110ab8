from __future__ import annotations
import io
from datetime import timedelta
from functools import lru_cache
from urllib.parse import quote
from minio import Minio
from minio.error import S3Error
import structlog
from app.config import settings

log = structlog.get_logger()

def _parse_endpoint(ep: str) -> tuple[str, bool]:
    # Return (host:port, secure)
    secure = ep.startswith("https://")
    host = ep.replace("http://", "").replace("https://", "")
    return host, secure

@lru_cache(maxsize=1)
def _client() -> Minio:
    host, secure = _parse_endpoint(settings.s3_endpoint)
    client = Minio(host, access_key=settings.s3_access_key, secret_key=settings.s3_secret_key, secure=secure)
    try:
        if not client.bucket_exists(settings.s3_bucket_uploads):
            client.make_bucket(settings.s3_bucket_uploads)
    except S3Error as e:
        # concurrent workers may race to create the bucket
        log.info("bucket_create_race", bucket=settings.s3_bucket_uploads, code=e.code)
    return client

def media_key(event_id: str, media_id: str, ext: str) -> str:
    return f"events/{event_id}/{media_id}.{ext}"

def thumb_key(event_id: str, media_id: str) -> str:
    return f"events/{event_id}/thumb_{media_id}.jpg"

def video_preview_key(event_id: str, media_id: str) -> str:
    return f"events/{event_id}/preview_{media_id}.mp4"

def put_bytes(key: str, data: bytes, content_type: str) -> None:
    _client().put_object(
        settings.s3_bucket_uploads, key, io.BytesIO(data), length=len(data), content_type=content_type
    )

def get_bytes(key: str) -> tuple[bytes, str]:
    """
    Retrieve object from storage.
    Returns (data, content_type).
    """
    try:
        response = _client().get_object(settings.s3_bucket_uploads, key)
        try:
            data = response.read()
            content_type = response.headers.get("Content-Type", "application/octet-stream")
        finally:
            response.close()
            response.release_conn()
        return data, content_type
    except S3Error as e:
        if e.code == "NoSuchKey":
            raise FileNotFoundError(f"Object not found: {key}")
        raise

def delete_object(key: str) -> None:
    _client().remove_object(settings.s3_bucket_uploads, key)

def presign_get(key: str) -> str:
    return _client().presigned_get_object(
        settings.s3_bucket_uploads, key, expires=timedelta(seconds=settings.s3_presign_expiry_seconds)
    )

def public_url(key: str | None) -> str:
    """Viewer-facing URL for a stored object; empty when nothing is stored yet."""
    if not key:
        return ""
    if settings.s3_presign_downloads:
        return presign_get(key)
    return f"/media/proxy?key={quote(key, safe='')}"
