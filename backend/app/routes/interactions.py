from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from app.db import get_session
from app.schemas.media import Comment, CommentCreate, GuestbookEntry, GuestbookCreate
from app.services.gallery import add_comment, add_guestbook_entry, NotFound

router = APIRouter(tags=["interactions"])

@router.post("/comments", response_model=Comment, status_code=201)
async def create_comment(payload: CommentCreate, session: AsyncSession = Depends(get_session)):
    try:
        return await add_comment(session, payload)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.post("/guestbook", response_model=GuestbookEntry, status_code=201)
async def create_guestbook_entry(payload: GuestbookCreate, session: AsyncSession = Depends(get_session)):
    try:
        return await add_guestbook_entry(session, payload)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
