from __future__ import annotations
import httpx
import structlog

from app.config import settings
from app.client.channel import EventChannel, DISCONNECTED
from app.client.store import GalleryStore
from app.client.submission import Captioner, EventContext, MediaSource, UploadRequest, prepare_upload
from app.client.transport import UploadTransport, UploadHandle, Outcome, Ready, ProgressCallback
from app.schemas.actor import Actor, GuestSession
from app.schemas.media import MediaItem, MediaVisibility, Comment, GuestbookEntry, LikeUpdate
from app.services.broadcast import USER_UPDATED, MEDIA_PROCESSED, MEDIA_FAILED, NEW_LIKE, NEW_COMMENT, NEW_MESSAGE

log = structlog.get_logger()


class EventGallery:
    """
    Everything one open event view needs: the baseline fetch, the room
    subscription feeding the store, and the upload pipeline
    (prepare -> optimistic entry -> transfer -> confirm or discard).
    """

    def __init__(
        self,
        event: EventContext,
        actor: Actor,
        *,
        api: httpx.AsyncClient | None = None,
        channel: EventChannel | None = None,
        transport: UploadTransport | None = None,
        captioner: Captioner | None = None,
        token: str | None = None,
    ):
        self.event = event
        self.actor = actor
        self.token = token
        self._owns_api = api is None
        self.api = api or httpx.AsyncClient(base_url=settings.api_base_url)
        # guest tokens only prove upload ownership; the room channel takes account tokens
        self.channel = channel or EventChannel(token=None if actor.is_guest else token)
        self.transport = transport or UploadTransport(client=self.api, token=token, guest_name=actor.guest_name)
        self.captioner = captioner
        self.store = GalleryStore(event.event_id, viewer=actor, host_id=event.host.id if event.host else None)
        self._inflight: dict[str, UploadHandle] = {}
        # video uploads the server accepted and the transcoder has not finished yet
        self.awaiting_processing: dict[str, UploadRequest] = {}

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {"X-Guest-Name": self.actor.guest_name} if self.actor.guest_name else {}

    async def start_guest_session(self) -> None:
        """
        Obtain a server-issued identity for a guest. Without it the guest can still
        upload but can never delete or see their own private items.
        """
        if not self.actor.is_guest or self.token:
            return
        r = await self.api.post("/guests", json={"name": self.actor.display_name})
        r.raise_for_status()
        session = GuestSession.model_validate(r.json())
        self.token = session.token
        self.actor = self.actor.model_copy(
            update={"guest_name": session.guest_name, "guest_identity": session.guest_identity}
        )
        self.store.viewer = self.actor
        self.transport.token = session.token
        log.info("guest_session_started", guest_identity=session.guest_identity)

    async def open(self) -> None:
        await self.start_guest_session()
        for name, handler in self.store.handlers().items():
            self.channel.on(name, handler)
        self.channel.on(MEDIA_PROCESSED, self._on_media_processed)
        self.channel.on(MEDIA_FAILED, self._on_media_failed)
        self.channel.on(USER_UPDATED, self._on_user_updated)
        self.channel.on(DISCONNECTED, self._on_disconnected)
        await self.channel.connect()
        # membership is live once acknowledged; fetching after that leaves no gap
        await self.channel.join_room(self.event.event_id, wait=True)
        await self.refresh()
        log.info("gallery_opened", event_id=self.event.event_id, items=len(self.store.items))

    async def refresh(self) -> None:
        eid = self.event.event_id
        r = await self.api.get(f"/events/{eid}/media", headers=self._headers())
        r.raise_for_status()
        g = await self.api.get(f"/events/{eid}/guestbook")
        g.raise_for_status()
        self.store.load(
            [MediaItem.model_validate(x) for x in r.json()],
            [GuestbookEntry.model_validate(x) for x in g.json()],
        )

    def _on_user_updated(self, data: dict) -> None:
        user = self.actor.user
        if user is None or data.get("id") != user.id:
            return
        fields = {k: v for k, v in data.items() if k in type(user).model_fields and k != "id"}
        self.actor = self.actor.model_copy(update={"user": user.model_copy(update=fields)})
        self.store.viewer = self.actor

    def _on_media_processed(self, data: dict) -> None:
        request = self.awaiting_processing.pop(str(data.get("id")), None)
        if request is not None:
            request.complete()

    def _on_media_failed(self, data: dict) -> None:
        request = self.awaiting_processing.pop(str(data.get("id")), None)
        if request is not None:
            request.fail(str(data.get("reason") or "Processing failed"))

    def _on_disconnected(self, _data: object) -> None:
        log.info("gallery_channel_lost", event_id=self.event.event_id)

    async def upload(
        self,
        source: MediaSource,
        *,
        caption: str | None = None,
        visibility: MediaVisibility = "public",
        watermark: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> Outcome:
        """
        Raises UploadValidationError before anything is shown or sent; every later
        problem comes back as a Failed outcome with the placeholder removed.
        """
        await self.start_guest_session()
        request = await prepare_upload(
            source, self.event, self.actor,
            caption=caption, visibility=visibility, watermark=watermark, captioner=self.captioner,
        )
        self.store.add_optimistic(request.to_optimistic_item())
        handle = self.transport.start(request, on_progress)
        self._inflight[request.id] = handle
        try:
            outcome = await handle.result()
        finally:
            self._inflight.pop(request.id, None)
        if isinstance(outcome, Ready):
            self.store.confirm(outcome.item)
            if request.state == "processing":
                current = self.store.get(request.id)
                # the room may already have reported the transcode result
                if current is None:
                    request.fail("Processing failed")
                elif current.processing_state == "ready":
                    request.complete()
                else:
                    self.awaiting_processing[request.id] = request
        else:
            self.store.discard_optimistic(request.id)
        return outcome

    def cancel_upload(self, media_id: str) -> bool:
        handle = self._inflight.get(media_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    async def like(self, media_id: str) -> LikeUpdate:
        r = await self.api.put(f"/media/{media_id}/like")
        r.raise_for_status()
        update = LikeUpdate.model_validate(r.json())
        self.store.apply(NEW_LIKE, update.model_dump())
        return update

    async def comment(self, media_id: str, text: str) -> Comment:
        r = await self.api.post("/comments", json={
            "media_id": media_id,
            "event_id": self.event.event_id,
            "sender_name": self.actor.display_name,
            "text": text,
        })
        r.raise_for_status()
        comment = Comment.model_validate(r.json())
        self.store.apply(NEW_COMMENT, comment.model_dump(mode="json"))
        return comment

    async def sign_guestbook(self, message: str) -> GuestbookEntry:
        r = await self.api.post("/guestbook", json={
            "event_id": self.event.event_id,
            "sender_name": self.actor.display_name,
            "message": message,
        })
        r.raise_for_status()
        entry = GuestbookEntry.model_validate(r.json())
        self.store.apply(NEW_MESSAGE, entry.model_dump(mode="json"))
        return entry

    async def delete(self, media_id: str) -> None:
        r = await self.api.delete(f"/media/{media_id}", headers=self._headers())
        r.raise_for_status()
        self.store.remove(media_id)

    async def close(self) -> None:
        for handle in list(self._inflight.values()):
            handle.cancel()
        if self.channel.connected:
            await self.channel.leave_room(self.event.event_id)
        await self.channel.disconnect()
        if self._owns_api:
            await self.api.aclose()
