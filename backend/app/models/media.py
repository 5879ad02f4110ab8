from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, Float, Boolean, DateTime, ForeignKey, JSON, func
from app.db import Base


class Media(Base):
    __tablename__ = "media"

    # client-assigned so the uploader can track it before the server confirms it
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("events.id", ondelete="CASCADE"), index=True, nullable=False
    )

    kind: Mapped[str] = mapped_column(String(8), nullable=False)                 # 'image' | 'video'
    processing_state: Mapped[str] = mapped_column(String(8), nullable=False)     # 'pending' | 'ready'
    storage_key: Mapped[str] = mapped_column(Text(), nullable=False)
    preview_key: Mapped[str | None] = mapped_column(Text(), nullable=True)       # set once a preview exists
    mime_type: Mapped[str] = mapped_column(String(64), nullable=False)
    size_mb: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    content_sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    caption: Mapped[str | None] = mapped_column(Text(), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    uploader_name: Mapped[str] = mapped_column(String(120), nullable=False)
    uploader_identity: Mapped[str] = mapped_column(String(160), index=True, nullable=False)  # user id or guest-<name>-<ts>
    uploader_user_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    visibility: Mapped[str] = mapped_column(String(8), nullable=False, default="public")  # 'public' | 'private'
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    watermark_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    watermark_text: Mapped[str | None] = mapped_column(String(120), nullable=True)

    meta_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Comment(Base):
    __tablename__ = "comments"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: f"comment-{uuid.uuid4().hex}")
    media_id: Mapped[str] = mapped_column(String(64), ForeignKey("media.id", ondelete="CASCADE"), index=True, nullable=False)
    event_id: Mapped[str] = mapped_column(String(64), ForeignKey("events.id", ondelete="CASCADE"), index=True, nullable=False)
    sender_name: Mapped[str] = mapped_column(String(120), nullable=False)
    text: Mapped[str] = mapped_column(Text(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class GuestbookEntry(Base):
    __tablename__ = "guestbook"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: f"gb-{uuid.uuid4().hex}")
    event_id: Mapped[str] = mapped_column(String(64), ForeignKey("events.id", ondelete="CASCADE"), index=True, nullable=False)
    sender_name: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(Text(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
