from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from app.db import get_session
from app.auth_deps import get_actor
from app.schemas.actor import Actor
from app.schemas.media import MediaItem, GuestbookEntry
from app.services.gallery import list_event_media, list_guestbook, NotFound

router = APIRouter(prefix="/events", tags=["events"])

@router.get("/{event_id}/media", response_model=list[MediaItem])
async def event_media(event_id: str, session: AsyncSession = Depends(get_session), actor: Actor = Depends(get_actor)):
    # full baseline for a (re)joining viewer; private items only for uploader/host/admin
    try:
        return await list_event_media(session, event_id, actor)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.get("/{event_id}/guestbook", response_model=list[GuestbookEntry])
async def event_guestbook(event_id: str, session: AsyncSession = Depends(get_session)):
    return await list_guestbook(session, event_id)
