from __future__ import annotations
import json
from typing import Any, Protocol
from fastapi.encoders import jsonable_encoder
from redis import Redis
import redis.asyncio as aioredis
from redis.exceptions import RedisError
import structlog
from app.config import settings

log = structlog.get_logger()

# Room-scoped event names
MEDIA_UPLOADED = "media_uploaded"
MEDIA_PROCESSED = "media_processed"
MEDIA_FAILED = "media_failed"
NEW_LIKE = "new_like"
NEW_COMMENT = "new_comment"
NEW_MESSAGE = "new_message"
# Per-user channel
USER_UPDATED = "user_updated"


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...


def envelope(name: str, payload: Any) -> str:
    return json.dumps({"event": name, "data": jsonable_encoder(payload)})


class RoomHub:
    """
    Live membership of event rooms and per-user channels for this process.
    Delivery is fire-and-forget: a socket that fails to take a message is dropped
    and the client is expected to re-fetch on reconnect.
    """

    def __init__(self) -> None:
        self.rooms: dict[str, set[Connection]] = {}
        self.user_channels: dict[str, set[Connection]] = {}

    def join(self, event_id: str, conn: Connection) -> None:
        self.rooms.setdefault(event_id, set()).add(conn)

    def leave(self, event_id: str, conn: Connection) -> None:
        members = self.rooms.get(event_id)
        if members is None:
            return
        members.discard(conn)
        if not members:
            del self.rooms[event_id]

    def subscribe_user(self, user_id: str, conn: Connection) -> None:
        self.user_channels.setdefault(user_id, set()).add(conn)

    def disconnect(self, conn: Connection) -> None:
        for scope in (self.rooms, self.user_channels):
            for key in [k for k, members in scope.items() if conn in members]:
                scope[key].discard(conn)
                if not scope[key]:
                    del scope[key]

    def members(self, event_id: str) -> int:
        return len(self.rooms.get(event_id, ()))

    async def _fan_out(self, conns: set[Connection], message: str) -> int:
        delivered = 0
        for conn in list(conns):
            try:
                await conn.send_text(message)
                delivered += 1
            except Exception as e:
                log.debug("broadcast_drop_connection", error=type(e).__name__)
                self.disconnect(conn)
        return delivered

    async def publish(self, event_id: str, name: str, payload: Any) -> int:
        delivered = await self._fan_out(self.rooms.get(event_id, set()), envelope(name, payload))
        log.debug("room_broadcast", event_id=event_id, event_name=name, delivered=delivered)
        return delivered

    async def send_to_user(self, user_id: str, name: str, payload: Any) -> int:
        return await self._fan_out(self.user_channels.get(user_id, set()), envelope(name, payload))


hub = RoomHub()


# --- cross-process relay (rq workers have no sockets) ---

def publish_from_worker(event_id: str, name: str, payload: Any, redis: Redis | None = None) -> None:
    conn = redis or Redis.from_url(settings.redis_url)
    message = json.dumps({"scope": "room", "key": event_id, "event": name, "data": jsonable_encoder(payload)})
    conn.publish(settings.redis_relay_channel, message)


async def dispatch_relayed(target: RoomHub, raw: str | bytes) -> None:
    try:
        msg = json.loads(raw)
        scope, key, name, data = msg["scope"], msg["key"], msg["event"], msg["data"]
    except (ValueError, KeyError, TypeError):
        log.warning("relay_message_malformed")
        return
    if scope == "user":
        await target.send_to_user(key, name, data)
    else:
        await target.publish(key, name, data)


async def relay_from_redis(target: RoomHub) -> None:
    """Forward worker-originated messages into this process's hub until cancelled."""
    client = aioredis.from_url(settings.redis_url)
    pubsub = client.pubsub()
    try:
        await pubsub.subscribe(settings.redis_relay_channel)
        log.info("relay_subscribed", channel=settings.redis_relay_channel)
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            await dispatch_relayed(target, message["data"])
    except (RedisError, OSError) as e:
        log.warning("relay_unavailable", error=str(e))
    finally:
        await pubsub.aclose()
        await client.aclose()
