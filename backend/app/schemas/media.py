from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, List
from datetime import datetime

MediaKind = Literal["image", "video"]
ProcessingState = Literal["pending", "ready"]
MediaVisibility = Literal["public", "private"]


class Comment(BaseModel):
    id: str
    media_id: str
    event_id: str
    sender_name: str
    text: str
    created_at: datetime


class MediaItem(BaseModel):
    id: str
    event_id: str
    kind: MediaKind
    url: str = ""                  # empty while a video is still transcoding
    preview_url: str | None = None
    processing_state: ProcessingState = "ready"
    caption: str | None = None
    uploaded_at: datetime
    uploader_name: str
    uploader_identity: str
    visibility: MediaVisibility = "public"
    like_count: int = 0
    watermark_applied: bool = False
    watermark_text: str | None = None
    comments: List[Comment] = Field(default_factory=list)

    @property
    def is_playable(self) -> bool:
        return self.processing_state == "ready" and bool(self.url or self.preview_url)


class MediaProcessed(BaseModel):
    id: str
    preview_url: str
    url: str | None = None


class MediaFailed(BaseModel):
    id: str
    reason: str


class LikeUpdate(BaseModel):
    id: str
    like_count: int


class GuestbookEntry(BaseModel):
    id: str
    event_id: str
    sender_name: str
    message: str
    created_at: datetime


class CommentCreate(BaseModel):
    id: str | None = None
    media_id: str
    event_id: str
    sender_name: str = Field(min_length=1, max_length=120)
    text: str = Field(min_length=1, max_length=2000)
    created_at: datetime | None = None


class GuestbookCreate(BaseModel):
    id: str | None = None
    event_id: str
    sender_name: str = Field(min_length=1, max_length=120)
    message: str = Field(min_length=1, max_length=2000)
    created_at: datetime | None = None


class BulkDeleteRequest(BaseModel):
    media_ids: List[str]


class BulkDeleteResult(BaseModel):
    success: bool = True
    deleted_count: int
