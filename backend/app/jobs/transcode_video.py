from __future__ import annotations
import asyncio
import os
import subprocess
import tempfile
import structlog
from minio.error import S3Error
from app.config import settings
from app.db import SessionLocal
from app.models.media import Media
from app.schemas.media import MediaProcessed, MediaFailed
from app.services import storage
from app.services.broadcast import publish_from_worker, MEDIA_PROCESSED, MEDIA_FAILED

log = structlog.get_logger()

def ffmpeg_args(src: str, dst: str) -> list[str]:
    # 720p H.264/AAC preview that every browser can play inline
    return [
        settings.ffmpeg_bin, "-i", src,
        "-vf", "scale=-2:720",
        "-c:v", "libx264", "-crf", "23", "-preset", "fast",
        "-c:a", "aac", "-b:a", "128k",
        "-movflags", "+faststart",
        "-y", dst,
    ]

def _transcode(data: bytes, ext: str) -> bytes:
    with tempfile.TemporaryDirectory(prefix="transcode_") as tmp:
        src = os.path.join(tmp, f"source.{ext}")
        dst = os.path.join(tmp, "preview.mp4")
        with open(src, "wb") as f:
            f.write(data)
        proc = subprocess.run(ffmpeg_args(src, dst), capture_output=True, timeout=settings.transcode_job_timeout)
        if proc.returncode != 0:
            tail = proc.stderr.decode(errors="ignore")[-400:]
            raise RuntimeError(f"ffmpeg exited with {proc.returncode}: {tail}")
        with open(dst, "rb") as f:
            return f.read()

async def _run(media_id: str):
    async with SessionLocal() as session:
        m = await session.get(Media, media_id)
        if not m:
            # deleted while queued
            log.info("transcode_skipped_missing", media_id=media_id)
            return
        if m.processing_state == "ready":
            return
        try:
            data, _ = storage.get_bytes(m.storage_key)
            preview = _transcode(data, m.storage_key.rsplit(".", 1)[-1])
            preview_key = storage.video_preview_key(m.event_id, m.id)
            storage.put_bytes(preview_key, preview, "video/mp4")
        except (RuntimeError, OSError, subprocess.SubprocessError) as e:
            log.error("transcode_failed", media_id=media_id, error=str(e))
            event_id, key = m.event_id, m.storage_key
            await session.delete(m)
            await session.commit()
            try:
                storage.delete_object(key)
            except (S3Error, OSError) as cleanup_err:
                log.warning("storage_delete_failed", media_id=media_id, key=key, error=str(cleanup_err))
            publish_from_worker(event_id, MEDIA_FAILED, MediaFailed(id=media_id, reason="Video processing failed"))
            return

        # keyed by id: re-applying the ready update is harmless
        m.preview_key = preview_key
        m.processing_state = "ready"
        await session.commit()
        log.info("transcode_completed", media_id=media_id, event_id=m.event_id, preview_bytes=len(preview))
        publish_from_worker(
            m.event_id,
            MEDIA_PROCESSED,
            MediaProcessed(id=m.id, preview_url=storage.public_url(preview_key), url=storage.public_url(m.storage_key)),
        )

def transcode_video(media_id: str):
    # RQ entry point (sync); run the async coroutine
    asyncio.run(_run(media_id))
