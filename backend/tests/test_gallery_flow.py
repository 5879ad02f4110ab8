import asyncio, os, subprocess
import httpx
from httpx import AsyncClient
import pytest
from app.main import app
from app.client.channel import EventChannel
from app.client.gallery import EventGallery
from app.client.submission import EventContext, MediaSource, QuotaExceeded
from app.client.transport import Ready, Failed, UploadTransport
from app.jobs import transcode_video as job
from app.schemas.actor import Actor, UserSnapshot
from app.services.broadcast import hub, dispatch_relayed

def _api() -> AsyncClient:
    return AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

async def _sunset(data: bytes) -> str:
    return "Sunset moment"

GUEST_SESSION = {"token": "guest-token", "guest_identity": "guest-Kim-1", "guest_name": "Kim"}

class FakeRedis:
    def __init__(self):
        self.raw: list[str] = []

    def publish(self, channel, message):
        self.raw.append(message)

async def _context(make_user, make_event, tier="PRO") -> EventContext:
    host = await make_user(tier=tier, name="Hana")
    event = await make_event(host.id)
    return EventContext(event_id=event.id, host=UserSnapshot.model_validate(host))

@pytest.mark.asyncio
async def test_image_upload_end_to_end(make_user, make_event, hub_connect, wait_for, jpeg):
    ctx = await _context(make_user, make_event)
    async with _api() as api_a, _api() as api_b:
        kim = EventGallery(ctx, Actor(guest_name="Kim"), api=api_a,
                           channel=EventChannel(connect=hub_connect), captioner=_sunset)
        lee = EventGallery(ctx, Actor(guest_name="Lee"), api=api_b, channel=EventChannel(connect=hub_connect))
        await kim.open()
        await lee.open()

        progress: list[int] = []
        source = MediaSource(data=jpeg(), filename="sunset.jpg", mime_type="image/jpeg", origin="camera")
        outcome = await kim.upload(source, on_progress=progress.append)

        assert isinstance(outcome, Ready)
        mid = outcome.item.id
        mine = kim.store.get(mid)
        assert mine.caption == "Sunset moment" and mine.processing_state == "ready"
        assert not kim.store.is_optimistic(mid)
        assert progress[-1] == 100

        await wait_for(lambda: lee.store.get(mid) is not None)
        assert lee.store.get(mid).caption == "Sunset moment"
        await asyncio.sleep(0.05)
        assert [i.id for i in kim.store.items].count(mid) == 1

        await kim.close()
        await lee.close()
    assert hub.members(ctx.event_id) == 0

@pytest.mark.asyncio
async def test_video_placeholder_is_updated_in_place(make_user, make_event, hub_connect, wait_for,
                                                     enqueued, monkeypatch, jpeg):
    ctx = await _context(make_user, make_event)
    redis = FakeRedis()
    real = job.publish_from_worker
    monkeypatch.setattr(job, "publish_from_worker", lambda eid, name, payload: real(eid, name, payload, redis=redis))
    monkeypatch.setattr(job, "_transcode", lambda data, ext: b"h264-preview")

    async with _api() as api_a, _api() as api_b:
        kim = EventGallery(ctx, Actor(guest_name="Kim"), api=api_a, channel=EventChannel(connect=hub_connect))
        lee = EventGallery(ctx, Actor(guest_name="Lee"), api=api_b, channel=EventChannel(connect=hub_connect))
        await kim.open()
        await lee.open()
        await kim.upload(MediaSource(data=jpeg(), filename="older.jpg", mime_type="image/jpeg"), caption="Cake")

        outcome = await kim.upload(MediaSource(data=os.urandom(4096), filename="dance.mp4", mime_type="video/mp4"))
        assert isinstance(outcome, Ready) and outcome.item.processing_state == "pending"
        mid = outcome.item.id
        assert enqueued == [mid]
        request = kim.awaiting_processing[mid]
        assert request.state == "processing"
        await wait_for(lambda: lee.store.get(mid) is not None)
        placeholder = lee.store.get(mid)
        assert placeholder.url == "" and not placeholder.is_playable
        position = [i.id for i in lee.store.items].index(mid)

        # the worker runs elsewhere; its message comes back through the relay
        await job._run(mid)
        for raw in redis.raw:
            await dispatch_relayed(hub, raw)

        await wait_for(lambda: lee.store.get(mid).processing_state == "ready")
        await wait_for(lambda: kim.store.get(mid).processing_state == "ready")
        await wait_for(lambda: request.state == "complete")
        assert mid not in kim.awaiting_processing
        done = lee.store.get(mid)
        assert done.preview_url and done.url and done.is_playable
        assert [i.id for i in lee.store.items].index(mid) == position

        await kim.close()
        await lee.close()

@pytest.mark.asyncio
async def test_guests_see_but_cannot_delete_each_others_uploads(make_user, make_event, hub_connect, wait_for, jpeg):
    ctx = await _context(make_user, make_event, tier="FREE")
    async with _api() as api_a, _api() as api_b:
        kim = EventGallery(ctx, Actor(guest_name="Kim"), api=api_a, channel=EventChannel(connect=hub_connect))
        lee = EventGallery(ctx, Actor(guest_name="Lee"), api=api_b, channel=EventChannel(connect=hub_connect))
        await kim.open()
        await lee.open()
        outcome = await kim.upload(MediaSource(data=jpeg(), filename="a.jpg", mime_type="image/jpeg"), caption="Hi")
        mid = outcome.item.id
        await wait_for(lambda: lee.store.get(mid) is not None)

        with pytest.raises(httpx.HTTPStatusError) as e:
            await lee.delete(mid)
        assert e.value.response.status_code == 403
        assert lee.store.get(mid) is not None

        await kim.delete(mid)
        assert kim.store.get(mid) is None

        await kim.close()
        await lee.close()

@pytest.mark.asyncio
async def test_likes_comments_and_guestbook_reach_other_viewers(make_user, make_event, make_media, hub_connect, wait_for):
    ctx = await _context(make_user, make_event)
    media = await make_media(ctx.event_id)
    async with _api() as api_a, _api() as api_b:
        kim = EventGallery(ctx, Actor(guest_name="Kim"), api=api_a, channel=EventChannel(connect=hub_connect))
        lee = EventGallery(ctx, Actor(guest_name="Lee"), api=api_b, channel=EventChannel(connect=hub_connect))
        await kim.open()
        await lee.open()
        assert lee.store.get(media.id) is not None

        like = await kim.like(media.id)
        comment = await kim.comment(media.id, "What a view")
        await kim.sign_guestbook("Congratulations!")

        await wait_for(lambda: lee.store.get(media.id).like_count == like.like_count)
        await wait_for(lambda: len(lee.store.get(media.id).comments) == 1)
        await wait_for(lambda: len(lee.store.guestbook) == 1)
        assert lee.store.get(media.id).comments[0].id == comment.id
        # the sender's own echo is deduplicated
        await asyncio.sleep(0.05)
        assert len(kim.store.get(media.id).comments) == 1
        assert len(kim.store.guestbook) == 1

        await kim.close()
        await lee.close()

@pytest.mark.asyncio
async def test_timeout_removes_optimistic_entry(jpeg):
    async def slow(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/guests":
            return httpx.Response(201, json=GUEST_SESSION)
        await request.aread()
        await asyncio.sleep(5)
        return httpx.Response(201, json={})

    ctx = EventContext(event_id="e-timeout")
    async with AsyncClient(transport=httpx.MockTransport(slow), base_url="http://test") as api:
        gallery = EventGallery(ctx, Actor(guest_name="Kim"), api=api,
                               transport=UploadTransport(client=api, timeout_seconds=0.05))
        outcome = await gallery.upload(MediaSource(data=jpeg(), filename="a.jpg", mime_type="image/jpeg"), caption="x")
    assert isinstance(outcome, Failed) and outcome.kind == "timeout"
    assert gallery.store.items == []

@pytest.mark.asyncio
async def test_cancel_removes_optimistic_entry(wait_for, jpeg):
    async def slow(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/guests":
            return httpx.Response(201, json=GUEST_SESSION)
        await request.aread()
        await asyncio.sleep(5)
        return httpx.Response(201, json={})

    ctx = EventContext(event_id="e-cancel")
    async with AsyncClient(transport=httpx.MockTransport(slow), base_url="http://test") as api:
        gallery = EventGallery(ctx, Actor(guest_name="Kim"), api=api)
        task = asyncio.create_task(
            gallery.upload(MediaSource(data=jpeg(), filename="a.jpg", mime_type="image/jpeg"), caption="x")
        )
        await wait_for(lambda: gallery.store.items)
        assert gallery.cancel_upload(gallery.store.items[0].id)
        outcome = await asyncio.wait_for(task, 1)
    assert outcome.kind == "cancelled"
    assert gallery.store.items == []

@pytest.mark.asyncio
async def test_quota_blocks_before_placeholder(jpeg):
    ctx = EventContext(event_id="e-quota")
    user = UserSnapshot(id="u1", name="Alex", storage_used_mb=95, storage_limit_mb=100)
    async with AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)), base_url="http://test") as api:
        gallery = EventGallery(ctx, Actor(user=user), api=api, token="tok")
        with pytest.raises(QuotaExceeded):
            await gallery.upload(MediaSource(data=b"\0" * (10 * 1024 * 1024), filename="a.jpg", mime_type="image/jpeg"))
    assert gallery.store.items == []

@pytest.mark.asyncio
async def test_failed_transcode_fails_the_upload_request(make_user, make_event, hub_connect, wait_for, monkeypatch):
    ctx = await _context(make_user, make_event)
    redis = FakeRedis()
    real = job.publish_from_worker
    monkeypatch.setattr(job, "publish_from_worker", lambda eid, name, payload: real(eid, name, payload, redis=redis))

    def broken(data, ext):
        raise subprocess.SubprocessError("ffmpeg crashed")
    monkeypatch.setattr(job, "_transcode", broken)

    async with _api() as api:
        kim = EventGallery(ctx, Actor(guest_name="Kim"), api=api, channel=EventChannel(connect=hub_connect))
        await kim.open()
        outcome = await kim.upload(MediaSource(data=os.urandom(4096), filename="dance.mp4", mime_type="video/mp4"))
        mid = outcome.item.id
        request = kim.awaiting_processing[mid]

        await job._run(mid)
        for raw in redis.raw:
            await dispatch_relayed(hub, raw)

        await wait_for(lambda: request.state == "failed")
        assert kim.store.get(mid) is None and mid not in kim.awaiting_processing
        await kim.close()

@pytest.mark.asyncio
async def test_open_waits_for_room_membership(make_user, make_event, hub_connect):
    ctx = await _context(make_user, make_event)
    async with _api() as api:
        kim = EventGallery(ctx, Actor(guest_name="Kim"), api=api, channel=EventChannel(connect=hub_connect))
        await kim.open()
        # membership is live before open() returns
        assert hub.members(ctx.event_id) == 1
        assert kim.actor.guest_identity.startswith("guest-Kim-")
        await kim.close()
