import os, tempfile

# must be set before anything imports app.config
_DB_DIR = tempfile.mkdtemp(prefix="eventsnap-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["REDIS_RELAY"] = "0"
os.environ.setdefault("ENVIRONMENT", "test")

import asyncio, io, json, uuid
from datetime import datetime, timezone
import pytest
from PIL import Image

from app.db import Base, engine, SessionLocal
from app.models.user import User
from app.models.event import Event
from app.models.media import Media
from app.security import decode_token
from app.services import storage, processing
from app.services.broadcast import hub, envelope


@pytest.fixture(scope="session", autouse=True)
def _schema():
    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    asyncio.run(_create())
    yield


@pytest.fixture(autouse=True)
def stored(monkeypatch):
    """In-memory object storage: key -> (bytes, content_type)."""
    objects: dict[str, tuple[bytes, str]] = {}

    def put_bytes(key, data, content_type):
        objects[key] = (data, content_type)

    def get_bytes(key):
        try:
            return objects[key]
        except KeyError:
            raise FileNotFoundError(key)

    def delete_object(key):
        objects.pop(key, None)

    monkeypatch.setattr(storage, "put_bytes", put_bytes)
    monkeypatch.setattr(storage, "get_bytes", get_bytes)
    monkeypatch.setattr(storage, "delete_object", delete_object)
    return objects


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    jobs: list[str] = []
    monkeypatch.setattr(processing, "enqueue_transcode", jobs.append)
    return jobs


def jpeg_bytes(size=(640, 480), color=(200, 120, 40)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="JPEG", quality=90)
    return out.getvalue()


@pytest.fixture
def jpeg():
    return jpeg_bytes


@pytest.fixture
def make_user():
    async def _make(**fields) -> User:
        fields.setdefault("name", "Alex")
        fields.setdefault("email", f"user-{uuid.uuid4().hex}@ex.com")
        user = User(**fields)
        async with SessionLocal() as s:
            s.add(user)
            await s.commit()
            await s.refresh(user)
        return user
    return _make


@pytest.fixture
def make_event():
    async def _make(host_id: str, **fields) -> Event:
        fields.setdefault("title", "Summer Wedding")
        fields.setdefault("code", uuid.uuid4().hex[:10].upper())
        event = Event(host_id=host_id, **fields)
        async with SessionLocal() as s:
            s.add(event)
            await s.commit()
            await s.refresh(event)
        return event
    return _make


@pytest.fixture
def make_media():
    async def _make(event_id: str, **fields) -> Media:
        media_id = fields.pop("id", f"media-{uuid.uuid4().hex}")
        defaults = dict(
            kind="image",
            processing_state="ready",
            storage_key=f"events/{event_id}/{media_id}.jpg",
            preview_key=f"events/{event_id}/thumb_{media_id}.jpg",
            mime_type="image/jpeg",
            size_mb=0.1,
            content_sha256=uuid.uuid4().hex,
            uploaded_at=datetime.now(timezone.utc),
            uploader_name="Sam",
            uploader_identity="guest-Sam-1",
            visibility="public",
            like_count=0,
            meta_json={},
        )
        defaults.update(fields)
        media = Media(id=media_id, event_id=event_id, **defaults)
        async with SessionLocal() as s:
            s.add(media)
            await s.commit()
            await s.refresh(media)
        return media
    return _make


class Recorder:
    """Stands in for a live socket; keeps every envelope it is sent."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_text(self, data: str) -> None:
        self.messages.append(json.loads(data))

    def named(self, name: str) -> list:
        return [m["data"] for m in self.messages if m["event"] == name]


@pytest.fixture
def listen():
    joined: list[Recorder] = []

    def _listen(event_id: str | None = None, user_id: str | None = None) -> Recorder:
        rec = Recorder()
        if event_id:
            hub.join(event_id, rec)
        if user_id:
            hub.subscribe_user(user_id, rec)
        joined.append(rec)
        return rec

    yield _listen
    for rec in joined:
        hub.disconnect(rec)


class HubSocket:
    """
    In-process client socket wired straight into the hub, speaking the same
    commands as /ws. Lets a client EventChannel run against the real app.
    """

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()

    async def send_text(self, data: str) -> None:
        await self.inbox.put(data)

    async def send(self, raw: str) -> None:
        cmd = json.loads(raw)
        if cmd["action"] == "join_event":
            hub.join(cmd["event_id"], self)
            await self.send_text(envelope("joined", {"event_id": cmd["event_id"]}))
        elif cmd["action"] == "leave_event":
            hub.leave(cmd["event_id"], self)
            await self.send_text(envelope("left", {"event_id": cmd["event_id"]}))
        elif cmd["action"] == "authenticate":
            sub = decode_token(cmd["token"])["sub"]
            hub.subscribe_user(sub, self)
            await self.send_text(envelope("authenticated", {"user_id": sub}))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        hub.disconnect(self)
        await self.inbox.put(None)


@pytest.fixture
def hub_connect():
    sockets: list[HubSocket] = []

    async def _connect(url: str) -> HubSocket:
        sock = HubSocket()
        sockets.append(sock)
        return sock

    yield _connect
    for sock in sockets:
        hub.disconnect(sock)


async def eventually(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_for():
    return eventually
