from __future__ import annotations
from typing import Any, Callable, Collection, Sequence
from pydantic import ValidationError
import structlog

from app.schemas.actor import Actor
from app.schemas.media import MediaItem, MediaProcessed, MediaFailed, LikeUpdate, Comment, GuestbookEntry
from app.services.broadcast import (
    MEDIA_UPLOADED, MEDIA_PROCESSED, MEDIA_FAILED, NEW_LIKE, NEW_COMMENT, NEW_MESSAGE,
)
from app.services.permissions import can_view_media

log = structlog.get_logger()

# --- pure merge steps: (items, payload) -> items; inputs are never mutated ---

def dedupe(items: Sequence[MediaItem]) -> list[MediaItem]:
    seen: set[str] = set()
    out = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out


def index_of(items: Sequence[MediaItem], media_id: str) -> int:
    for i, item in enumerate(items):
        if item.id == media_id:
            return i
    return -1


def upsert(items: Sequence[MediaItem], item: MediaItem) -> list[MediaItem]:
    i = index_of(items, item.id)
    if i < 0:
        return [item, *items]
    return [*items[:i], item, *items[i + 1:]]


def merge_uploaded(items: Sequence[MediaItem], item: MediaItem, optimistic: Collection[str] = ()) -> list[MediaItem]:
    """A confirmed entry wins over the echo; an optimistic one is replaced where it sits."""
    i = index_of(items, item.id)
    if i < 0:
        return [item, *items]
    if item.id in optimistic:
        return [*items[:i], item, *items[i + 1:]]
    return list(items)


def merge_processed(items: Sequence[MediaItem], update: MediaProcessed) -> list[MediaItem]:
    i = index_of(items, update.id)
    if i < 0:
        return list(items)
    changes: dict[str, Any] = {"processing_state": "ready", "preview_url": update.preview_url}
    if update.url:
        changes["url"] = update.url
    return [*items[:i], items[i].model_copy(update=changes), *items[i + 1:]]


def merge_like(items: Sequence[MediaItem], update: LikeUpdate) -> list[MediaItem]:
    i = index_of(items, update.id)
    if i < 0:
        return list(items)
    return [*items[:i], items[i].model_copy(update={"like_count": update.like_count}), *items[i + 1:]]


def merge_comment(items: Sequence[MediaItem], comment: Comment) -> list[MediaItem]:
    i = index_of(items, comment.media_id)
    if i < 0 or any(c.id == comment.id for c in items[i].comments):
        return list(items)
    target = items[i]
    return [*items[:i], target.model_copy(update={"comments": [*target.comments, comment]}), *items[i + 1:]]


def remove_item(items: Sequence[MediaItem], media_id: str) -> list[MediaItem]:
    return [item for item in items if item.id != media_id]


def merge_guestbook(entries: Sequence[GuestbookEntry], entry: GuestbookEntry) -> list[GuestbookEntry]:
    if any(e.id == entry.id for e in entries):
        return list(entries)
    return [entry, *entries]


class GalleryStore:
    """
    The gallery of one event as one viewer sees it. Broadcast payloads and local
    outcomes are folded in by media id; order is newest first.
    """

    def __init__(self, event_id: str, viewer: Actor | None = None, host_id: str | None = None):
        self.event_id = event_id
        self.viewer = viewer
        self.host_id = host_id
        self.items: list[MediaItem] = []
        self.guestbook: list[GuestbookEntry] = []
        self._optimistic: set[str] = set()

    def get(self, media_id: str) -> MediaItem | None:
        i = index_of(self.items, media_id)
        return self.items[i] if i >= 0 else None

    def is_optimistic(self, media_id: str) -> bool:
        return media_id in self._optimistic

    def load(self, items: Sequence[MediaItem], guestbook: Sequence[GuestbookEntry] | None = None) -> None:
        baseline = dedupe(items)
        known = {item.id for item in baseline}
        # uploads still in flight survive a re-fetch
        pending = [item for item in self.items if item.id in self._optimistic and item.id not in known]
        self._optimistic.intersection_update(item.id for item in pending)
        self.items = [*pending, *baseline]
        if guestbook is not None:
            self.guestbook = []
            for entry in reversed(list(guestbook)):
                self.guestbook = merge_guestbook(self.guestbook, entry)

    def add_optimistic(self, item: MediaItem) -> None:
        if index_of(self.items, item.id) >= 0:
            return
        self._optimistic.add(item.id)
        self.items = [item, *self.items]

    def confirm(self, item: MediaItem) -> None:
        """
        Replace our placeholder with the server copy. Once the room echo has landed
        the entry is already server state, possibly newer than this response, so
        it is left alone; an entry removed meanwhile stays removed.
        """
        if item.id not in self._optimistic:
            return
        self._optimistic.discard(item.id)
        self.items = upsert(self.items, item)

    def remove(self, media_id: str) -> None:
        self._optimistic.discard(media_id)
        self.items = remove_item(self.items, media_id)

    def discard_optimistic(self, media_id: str) -> None:
        if media_id not in self._optimistic:
            return
        self._optimistic.discard(media_id)
        self.items = remove_item(self.items, media_id)

    def _visible(self, item: MediaItem) -> bool:
        return can_view_media(self.viewer, item.visibility, item.uploader_identity, self.host_id)

    def apply(self, name: str, data: Any) -> None:
        """Fold one room message into the store. Unknown names are ignored."""
        try:
            if name == MEDIA_UPLOADED:
                item = MediaItem.model_validate(data)
                if item.event_id != self.event_id or not self._visible(item):
                    return
                self.items = merge_uploaded(self.items, item, self._optimistic)
                self._optimistic.discard(item.id)
            elif name == MEDIA_PROCESSED:
                self.items = merge_processed(self.items, MediaProcessed.model_validate(data))
            elif name == MEDIA_FAILED:
                failed = MediaFailed.model_validate(data)
                self.remove(failed.id)
            elif name == NEW_LIKE:
                self.items = merge_like(self.items, LikeUpdate.model_validate(data))
            elif name == NEW_COMMENT:
                self.items = merge_comment(self.items, Comment.model_validate(data))
            elif name == NEW_MESSAGE:
                entry = GuestbookEntry.model_validate(data)
                if entry.event_id == self.event_id:
                    self.guestbook = merge_guestbook(self.guestbook, entry)
        except ValidationError as e:
            log.warning("store_payload_invalid", event_name=name, errors=e.error_count())

    def handlers(self) -> dict[str, Callable[[Any], None]]:
        names = (MEDIA_UPLOADED, MEDIA_PROCESSED, MEDIA_FAILED, NEW_LIKE, NEW_COMMENT, NEW_MESSAGE)
        return {name: (lambda data, name=name: self.apply(name, data)) for name in names}
