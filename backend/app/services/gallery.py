from __future__ import annotations
from collections import defaultdict
from datetime import datetime, timezone as dt_tz
from fastapi.concurrency import run_in_threadpool
from minio.error import S3Error
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.models.event import Event
from app.models.media import Media, Comment as CommentRow, GuestbookEntry as GuestbookRow
from app.schemas.actor import Actor
from app.schemas.media import MediaItem, Comment, GuestbookEntry, CommentCreate, GuestbookCreate, LikeUpdate
from app.services import storage
from app.services.broadcast import hub, NEW_LIKE, NEW_COMMENT, NEW_MESSAGE
from app.services.permissions import can_modify_media, can_view_media
from app.services.processing import to_media_item

log = structlog.get_logger()


class NotFound(Exception):
    pass


class Forbidden(Exception):
    pass


async def list_event_media(session: AsyncSession, event_id: str, viewer: Actor | None) -> list[MediaItem]:
    """Full current collection, newest first, with private items filtered for this viewer."""
    event = await session.get(Event, event_id)
    if not event:
        raise NotFound("Event not found")
    rows = (
        await session.execute(
            select(Media).where(Media.event_id == event_id).order_by(Media.uploaded_at.desc(), Media.id)
        )
    ).scalars().all()
    comments = (
        await session.execute(
            select(CommentRow).where(CommentRow.event_id == event_id).order_by(CommentRow.created_at.asc())
        )
    ).scalars().all()
    by_media: dict[str, list[CommentRow]] = defaultdict(list)
    for c in comments:
        by_media[c.media_id].append(c)
    return [
        to_media_item(m, by_media.get(m.id, ()))
        for m in rows
        if can_view_media(viewer, m.visibility, m.uploader_identity, event.host_id)
    ]


async def list_guestbook(session: AsyncSession, event_id: str) -> list[GuestbookEntry]:
    rows = (
        await session.execute(
            select(GuestbookRow).where(GuestbookRow.event_id == event_id).order_by(GuestbookRow.created_at.desc())
        )
    ).scalars().all()
    return [
        GuestbookEntry(id=g.id, event_id=g.event_id, sender_name=g.sender_name, message=g.message, created_at=g.created_at)
        for g in rows
    ]


async def record_like(session: AsyncSession, media_id: str) -> LikeUpdate:
    # one request = one increment; no per-viewer dedup
    result = await session.execute(
        update(Media).where(Media.id == media_id).values(like_count=Media.like_count + 1)
    )
    if result.rowcount == 0:
        raise NotFound("Media not found")
    await session.commit()
    row = await session.get(Media, media_id)
    await session.refresh(row)
    like = LikeUpdate(id=row.id, like_count=row.like_count)
    await hub.publish(row.event_id, NEW_LIKE, like)
    return like


async def add_comment(session: AsyncSession, payload: CommentCreate) -> Comment:
    media = await session.get(Media, payload.media_id)
    if not media or media.event_id != payload.event_id:
        raise NotFound("Media not found")
    row = CommentRow(
        media_id=media.id,
        event_id=media.event_id,
        sender_name=payload.sender_name,
        text=payload.text,
        created_at=payload.created_at or datetime.now(dt_tz.utc),
    )
    if payload.id:
        row.id = payload.id
    session.add(row)
    await session.commit()
    comment = Comment(id=row.id, media_id=row.media_id, event_id=row.event_id,
                      sender_name=row.sender_name, text=row.text, created_at=row.created_at)
    await hub.publish(row.event_id, NEW_COMMENT, comment)
    return comment


async def add_guestbook_entry(session: AsyncSession, payload: GuestbookCreate) -> GuestbookEntry:
    if not await session.get(Event, payload.event_id):
        raise NotFound("Event not found")
    row = GuestbookRow(
        event_id=payload.event_id,
        sender_name=payload.sender_name,
        message=payload.message,
        created_at=payload.created_at or datetime.now(dt_tz.utc),
    )
    if payload.id:
        row.id = payload.id
    session.add(row)
    await session.commit()
    entry = GuestbookEntry(id=row.id, event_id=row.event_id, sender_name=row.sender_name,
                           message=row.message, created_at=row.created_at)
    await hub.publish(row.event_id, NEW_MESSAGE, entry)
    return entry


async def _remove_objects(media: Media) -> None:
    for key in (media.storage_key, media.preview_key):
        if not key:
            continue
        try:
            await run_in_threadpool(storage.delete_object, key)
        except (S3Error, OSError) as e:
            log.warning("storage_delete_failed", media_id=media.id, key=key, error=str(e))


async def delete_media(session: AsyncSession, media_id: str, actor: Actor) -> None:
    media = await session.get(Media, media_id)
    if not media:
        raise NotFound("Media not found")
    event = await session.get(Event, media.event_id)
    if not can_modify_media(actor, media.uploader_identity, event.host_id if event else ""):
        raise Forbidden("Not allowed to delete this media")
    await _remove_objects(media)
    await session.execute(delete(CommentRow).where(CommentRow.media_id == media_id))
    await session.delete(media)
    await session.commit()
    log.info("media_deleted", media_id=media_id, event_id=media.event_id, by=actor.identity)


async def bulk_delete_media(session: AsyncSession, media_ids: list[str], actor: Actor) -> int:
    """Deletes what the actor may delete and silently skips the rest."""
    deleted = 0
    for media_id in dict.fromkeys(media_ids):
        try:
            await delete_media(session, media_id, actor)
        except (NotFound, Forbidden):
            continue
        deleted += 1
    return deleted
