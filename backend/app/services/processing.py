from __future__ import annotations
import hashlib
from datetime import datetime, timezone as dt_tz
from typing import Iterable
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from redis import Redis
from rq import Queue
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.config import settings
from app.models.event import Event
from app.models.media import Media, Comment as CommentRow
from app.models.user import User
from app.schemas.actor import Actor, UserSnapshot
from app.schemas.media import MediaItem, Comment, MediaKind, MediaVisibility
from app.services import storage
from app.services.broadcast import hub, MEDIA_UPLOADED, USER_UPDATED
from app.services.identity import guest_identity
from app.services.media import (
    ALLOWED_VIDEO_MIME, analyze_image, normalize_orientation, make_preview, ext_for_mime,
)
from app.services.tiers import governing_tier_config, tier_config_for, exceeds_quota

log = structlog.get_logger()

# RQ queue (lazy: Redis connects on first enqueue)
_redis = Redis.from_url(settings.redis_url)
q = Queue("media", connection=_redis)


class UploadRejected(Exception):
    """Server-side re-validation said no; carried to the client as an HTTP error detail."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason


class IncomingUpload(BaseModel):
    id: str
    event_id: str
    kind: MediaKind
    filename: str
    mime_type: str
    data: bytes
    caption: str | None = None
    uploaded_at: datetime | None = None
    uploader_name: str | None = None
    visibility: MediaVisibility = "public"
    watermark_applied: bool = False


def to_media_item(m: Media, comments: Iterable[CommentRow] = ()) -> MediaItem:
    ready = m.processing_state == "ready"
    return MediaItem(
        id=m.id,
        event_id=m.event_id,
        kind=m.kind,
        url=storage.public_url(m.storage_key) if ready else "",
        preview_url=storage.public_url(m.preview_key) if m.preview_key else None,
        processing_state=m.processing_state,
        caption=m.caption,
        uploaded_at=m.uploaded_at,
        uploader_name=m.uploader_name,
        uploader_identity=m.uploader_identity,
        visibility=m.visibility,
        like_count=m.like_count,
        watermark_applied=m.watermark_applied,
        watermark_text=m.watermark_text,
        comments=[
            Comment(id=c.id, media_id=c.media_id, event_id=c.event_id, sender_name=c.sender_name,
                    text=c.text, created_at=c.created_at)
            for c in comments
        ],
    )


def enqueue_transcode(media_id: str) -> None:
    from app.jobs.transcode_video import transcode_video
    q.enqueue(transcode_video, media_id, job_timeout=settings.transcode_job_timeout)


def _replay_or_conflict(existing: Media, event_id: str, digest: str) -> MediaItem:
    # Same id + same bytes is a retry of the same logical upload
    if existing.event_id == event_id and existing.content_sha256 == digest:
        return to_media_item(existing)
    raise UploadRejected(409, "Media id already in use")


async def accept_upload(session: AsyncSession, upload: IncomingUpload, actor: Actor) -> tuple[MediaItem, bool]:
    """
    Persist an upload and hand it to processing.
    Returns (item, created). Images come back 'ready'; videos come back 'pending'
    with an empty url and finish out of band via the transcode job.
    """
    event = await session.get(Event, upload.event_id)
    if not event:
        raise UploadRejected(404, "Event not found")
    now = datetime.now(dt_tz.utc)
    if event.expires_at is not None and _aware(event.expires_at) <= now:
        raise UploadRejected(403, "Event has expired")

    digest = hashlib.sha256(upload.data).hexdigest()
    existing = await session.get(Media, upload.id)
    if existing:
        return _replay_or_conflict(existing, event.id, digest), False

    size_mb = len(upload.data) / (1024 * 1024)
    user_row: User | None = None
    if actor.is_guest:
        if size_mb > settings.guest_max_upload_mb:
            raise UploadRejected(413, "File too large for guest upload")
    else:
        # fresh quota from the row: the client's snapshot may be stale
        user_row = await session.get(User, actor.user.id)
        if not user_row:
            raise UploadRejected(401, "User not found")
        if exceeds_quota(user_row.storage_used_mb, user_row.storage_limit_mb, size_mb):
            raise UploadRejected(403, "Storage limit exceeded")

    host_row = await session.get(User, event.host_id)
    host = UserSnapshot.model_validate(host_row) if host_row else None
    if upload.kind == "video" and not governing_tier_config(actor, host).allow_video:
        raise UploadRejected(403, "Video uploads are not available for this event")

    own_tier = tier_config_for(actor.user)
    watermarked = bool(upload.watermark_applied and actor.role == "PHOTOGRAPHER" and own_tier.allow_watermark)

    if actor.is_guest:
        # anonymous guests get an identity nobody holds a token for
        identity = actor.guest_identity or guest_identity(actor.guest_name or "anon")
    else:
        identity = actor.identity

    if upload.kind == "image":
        try:
            mime, _exif = analyze_image(upload.data)
        except ValueError as e:
            raise UploadRejected(400, str(e))
        body = normalize_orientation(upload.data, mime)
        preview = make_preview(body, settings.preview_max_px, settings.preview_jpeg_quality)
        key = storage.media_key(event.id, upload.id, ext_for_mime(mime))
        preview_key = storage.thumb_key(event.id, upload.id)
        await run_in_threadpool(storage.put_bytes, key, body, mime)
        await run_in_threadpool(storage.put_bytes, preview_key, preview, "image/jpeg")
        state = "ready"
    else:
        mime = upload.mime_type
        if mime not in ALLOWED_VIDEO_MIME:
            raise UploadRejected(400, "Unsupported video type")
        key = storage.media_key(event.id, upload.id, ext_for_mime(mime))
        preview_key = None
        await run_in_threadpool(storage.put_bytes, key, upload.data, mime)
        state = "pending"

    row = Media(
        id=upload.id,
        event_id=event.id,
        kind=upload.kind,
        processing_state=state,
        storage_key=key,
        preview_key=preview_key,
        mime_type=mime,
        size_mb=size_mb,
        content_sha256=digest,
        caption=upload.caption,
        uploaded_at=upload.uploaded_at or now,
        uploader_name=(upload.uploader_name or actor.display_name)[:120],
        uploader_identity=identity,
        uploader_user_id=actor.user.id if actor.user else None,
        visibility=upload.visibility,
        like_count=0,
        watermark_applied=watermarked,
        watermark_text=actor.user.studio_name if watermarked and actor.user else None,
        meta_json={"filename": upload.filename},
    )
    session.add(row)
    try:
        await session.commit()
    except IntegrityError:
        # a concurrent retry with the same id won the insert
        await session.rollback()
        existing = await session.get(Media, upload.id)
        if not existing:
            raise
        return _replay_or_conflict(existing, event.id, digest), False

    item = to_media_item(row)
    log.info("media_accepted", media_id=row.id, event_id=event.id, kind=row.kind,
             state=row.processing_state, size_mb=round(size_mb, 3), guest=actor.is_guest)

    if user_row is not None:
        await session.execute(
            update(User).where(User.id == user_row.id)
            .values(storage_used_mb=User.storage_used_mb + size_mb)
        )
        await session.commit()
        await session.refresh(user_row)
        await hub.send_to_user(user_row.id, USER_UPDATED,
                               {"id": user_row.id, "storage_used_mb": user_row.storage_used_mb})

    await hub.publish(event.id, MEDIA_UPLOADED, item)

    if state == "pending":
        try:
            enqueue_transcode(row.id)
        except Exception as e:
            # stays pending; a later re-enqueue can pick it up
            log.warning("transcode_enqueue_failed", media_id=row.id, error=str(e))

    return item, True


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=dt_tz.utc)
