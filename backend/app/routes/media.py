from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Form, File, UploadFile, Response
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.auth_deps import get_actor
from app.schemas.actor import Actor
from app.schemas.media import MediaItem, MediaKind, MediaVisibility, LikeUpdate, BulkDeleteRequest, BulkDeleteResult
from app.services import storage
from app.services.gallery import record_like, delete_media, bulk_delete_media, NotFound, Forbidden
from app.services.processing import IncomingUpload, UploadRejected, accept_upload

router = APIRouter(prefix="/media", tags=["media"])

@router.post("", response_model=MediaItem, status_code=201)
async def upload_media(
    response: Response,
    file: UploadFile = File(..., description="image or video"),
    id: str = Form(..., min_length=1, max_length=64, description="client-assigned media id"),
    event_id: str = Form(...),
    kind: MediaKind = Form(...),
    caption: str | None = Form(default=None),
    uploaded_at: datetime | None = Form(default=None),
    uploader_name: str | None = Form(default=None),
    visibility: MediaVisibility = Form(default="public"),
    watermark_applied: bool = Form(default=False),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    """
    Accept an upload. Images are returned 'ready'; videos return 'pending' right
    away and are finished by the transcode worker, announced as media_processed.
    Re-sending the same id with the same bytes returns the stored item (200).
    """
    if actor.is_guest and not actor.guest_name and uploader_name:
        actor = actor.model_copy(update={"guest_name": uploader_name})
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file provided")
    upload = IncomingUpload(
        id=id,
        event_id=event_id,
        kind=kind,
        filename=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        data=data,
        caption=caption,
        uploaded_at=uploaded_at,
        uploader_name=uploader_name,
        visibility=visibility,
        watermark_applied=watermark_applied,
    )
    try:
        item, created = await accept_upload(session, upload, actor)
    except UploadRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.reason)
    if not created:
        response.status_code = 200
    return item

@router.put("/{media_id}/like", response_model=LikeUpdate)
async def like_media(media_id: str, session: AsyncSession = Depends(get_session)):
    try:
        return await record_like(session, media_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.delete("/{media_id}")
async def remove_media(
    media_id: str,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    try:
        await delete_media(session, media_id, actor)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"success": True}

@router.post("/bulk-delete", response_model=BulkDeleteResult)
async def remove_media_bulk(
    payload: BulkDeleteRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    if not payload.media_ids:
        raise HTTPException(status_code=400, detail="No media IDs provided")
    deleted = await bulk_delete_media(session, payload.media_ids, actor)
    return BulkDeleteResult(deleted_count=deleted)

@router.get("/proxy")
async def proxy_media(key: str = Query(..., min_length=1)):
    """Stream a stored object; keys are immutable so responses cache forever."""
    if not key.startswith("events/"):
        raise HTTPException(status_code=400, detail="Invalid key")
    try:
        data, content_type = await run_in_threadpool(storage.get_bytes, key)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Not found")
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
