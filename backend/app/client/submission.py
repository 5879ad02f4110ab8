from __future__ import annotations
import asyncio
import os
from datetime import datetime, timezone as dt_tz
from typing import Awaitable, Callable, Literal
from pydantic import BaseModel, Field
import structlog

from app.config import settings
from app.schemas.actor import Actor, UserSnapshot
from app.schemas.media import MediaItem, MediaKind, MediaVisibility
from app.services.captioning import caption_image
from app.services.identity import guest_identity, new_media_id
from app.services.media import kind_for_mime
from app.services.tiers import tier_config_for, governing_tier_config, exceeds_quota
from app.services.watermark import apply_watermark, decode_logo

log = structlog.get_logger()

Captioner = Callable[[bytes], Awaitable[str]]
UploadState = Literal["created", "submitting", "processing", "complete", "failed", "cancelled"]

_TRANSITIONS: dict[str, set[str]] = {
    "created": {"submitting", "failed", "cancelled"},
    "submitting": {"processing", "complete", "failed", "cancelled"},
    "processing": {"complete", "failed", "cancelled"},
    "complete": set(),
    "failed": set(),
    "cancelled": set(),
}


class UploadValidationError(Exception):
    """Raised before any network call when a submission cannot proceed."""


class QuotaExceeded(UploadValidationError):
    def __init__(self, used_mb: float, limit_mb: float, size_mb: float):
        super().__init__(f"Storage limit exceeded: {used_mb:.1f} + {size_mb:.1f} MB > {limit_mb:.0f} MB")
        self.used_mb = used_mb
        self.limit_mb = limit_mb
        self.size_mb = size_mb


class VideoNotAllowed(UploadValidationError):
    def __init__(self) -> None:
        super().__init__("Video uploads are not available for this event")


class InvalidTransition(RuntimeError):
    pass


class MediaSource(BaseModel):
    data: bytes
    filename: str
    mime_type: str
    origin: Literal["camera", "file"] = "file"

    @property
    def kind(self) -> MediaKind:
        return kind_for_mime(self.mime_type)

    @property
    def size_mb(self) -> float:
        return len(self.data) / (1024 * 1024)


class EventContext(BaseModel):
    event_id: str
    host: UserSnapshot | None = None


class UploadRequest(BaseModel):
    """One in-flight submission. Lives in memory only and is dropped once terminal."""
    id: str
    event_id: str
    kind: MediaKind
    filename: str
    mime_type: str
    data: bytes
    caption: str | None = None
    visibility: MediaVisibility = "public"
    watermark_applied: bool = False
    watermark_text: str | None = None
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(dt_tz.utc))
    uploader_name: str
    uploader_identity: str
    state: UploadState = "created"
    progress_percent: int = 0
    failure: str | None = None

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def _move(self, target: UploadState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state} -> {target}")
        self.state = target

    def begin(self) -> None:
        self._move("submitting")

    def report_progress(self, percent: float) -> bool:
        """Record progress; returns False when the value would not advance it."""
        value = max(0, min(100, int(percent)))
        if self.state != "submitting" or value <= self.progress_percent:
            return False
        self.progress_percent = value
        return True

    def mark_processing(self) -> None:
        if self.kind != "video":
            raise InvalidTransition("only videos are processed after transfer")
        self._move("processing")

    def complete(self) -> None:
        self._move("complete")
        self.progress_percent = 100

    def fail(self, reason: str) -> None:
        self._move("failed")
        self.failure = reason

    def cancel(self) -> None:
        self._move("cancelled")

    def form_fields(self) -> dict[str, str]:
        fields = {
            "id": self.id,
            "event_id": self.event_id,
            "kind": self.kind,
            "uploaded_at": self.uploaded_at.isoformat(),
            "uploader_name": self.uploader_name,
            "uploader_identity": self.uploader_identity,
            "visibility": self.visibility,
            "watermark_applied": "true" if self.watermark_applied else "false",
        }
        if self.caption:
            fields["caption"] = self.caption
        return fields

    def to_optimistic_item(self) -> MediaItem:
        # placeholder shown until the server copy arrives
        return MediaItem(
            id=self.id,
            event_id=self.event_id,
            kind=self.kind,
            url="",
            processing_state="pending",
            caption=self.caption,
            uploaded_at=self.uploaded_at,
            uploader_name=self.uploader_name,
            uploader_identity=self.uploader_identity,
            visibility=self.visibility,
            watermark_applied=self.watermark_applied,
            watermark_text=self.watermark_text,
        )


def validate_submission(source: MediaSource, event: EventContext, actor: Actor) -> None:
    """Quota then video entitlement. Guests have no quota of their own."""
    user = actor.user
    if user is not None and exceeds_quota(user.storage_used_mb, user.storage_limit_mb, source.size_mb):
        raise QuotaExceeded(user.storage_used_mb, user.storage_limit_mb, source.size_mb)
    if source.kind == "video" and not governing_tier_config(actor, event.host).allow_video:
        raise VideoNotAllowed()


def should_watermark(actor: Actor, toggle: bool) -> bool:
    return bool(toggle and actor.role == "PHOTOGRAPHER" and tier_config_for(actor.user).allow_watermark)


async def _caption_or_default(data: bytes, captioner: Captioner, timeout: float) -> str:
    try:
        text = await asyncio.wait_for(captioner(data), timeout)
    except Exception as e:
        log.info("caption_fallback", reason=type(e).__name__)
        return settings.caption_default
    return (text or "").strip() or settings.caption_default


async def prepare_upload(
    source: MediaSource,
    event: EventContext,
    actor: Actor,
    *,
    caption: str | None = None,
    visibility: MediaVisibility = "public",
    watermark: bool = False,
    captioner: Captioner | None = None,
    caption_timeout: float | None = None,
) -> UploadRequest:
    validate_submission(source, event, actor)

    kind = source.kind
    if not caption and kind == "image":
        caption = await _caption_or_default(
            source.data,
            captioner or caption_image,
            settings.caption_timeout_seconds if caption_timeout is None else caption_timeout,
        )

    data, mime, filename = source.data, source.mime_type, source.filename
    watermark_text = None
    applied = False
    if kind == "image" and should_watermark(actor, watermark):
        user = actor.user
        watermark_text = user.studio_name or user.name
        data = await asyncio.to_thread(
            apply_watermark,
            data,
            watermark_text,
            decode_logo(user.logo_url),
            user.watermark_opacity,
            user.watermark_size,
            user.watermark_position,
            user.watermark_offset_x,
            user.watermark_offset_y,
        )
        mime = "image/jpeg"
        filename = os.path.splitext(filename)[0] + ".jpg"
        applied = True

    identity = actor.identity or guest_identity(actor.guest_name or "anon")
    request = UploadRequest(
        id=new_media_id(),
        event_id=event.event_id,
        kind=kind,
        filename=filename,
        mime_type=mime,
        data=data,
        caption=caption,
        visibility=visibility,
        watermark_applied=applied,
        watermark_text=watermark_text,
        uploader_name=actor.display_name,
        uploader_identity=identity,
    )
    log.debug("upload_prepared", media_id=request.id, kind=kind, origin=source.origin,
              size_mb=round(source.size_mb, 3), watermarked=applied)
    return request
