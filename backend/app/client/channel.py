from __future__ import annotations
import asyncio
import inspect
import json
from collections import defaultdict
from typing import Any, Awaitable, Callable
import websockets
from websockets.exceptions import ConnectionClosed
import structlog

from app.config import settings

log = structlog.get_logger()

Handler = Callable[[Any], Awaitable[None] | None]
Connector = Callable[[str], Awaitable[Any]]

# Local lifecycle notifications, never sent by the server
DISCONNECTED = "disconnected"

# Server acknowledgement of a join_event command
JOINED = "joined"


class EventChannel:
    """
    One viewer's live connection to the room service. Owned by whoever opens an
    event view and closed with it; after a reconnect the owner re-fetches state.
    """

    def __init__(self, url: str | None = None, *, connect: Connector | None = None, token: str | None = None):
        self.url = url or settings.ws_url
        self.token = token
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._rooms: set[str] = set()
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._join_waiters: dict[str, list[asyncio.Future]] = defaultdict(list)

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def rooms(self) -> frozenset[str]:
        return frozenset(self._rooms)

    async def connect(self) -> None:
        if self._ws is not None:
            return
        self._ws = await self._connect(self.url)
        self._reader = asyncio.create_task(self._dispatch_loop(self._ws))
        if self.token:
            await self._send({"action": "authenticate", "token": self.token})
        for event_id in sorted(self._rooms):
            await self._send({"action": "join_event", "event_id": event_id})
        log.info("channel_connected", url=self.url, rooms=len(self._rooms))

    async def join_room(self, event_id: str, *, wait: bool = False, timeout: float | None = None) -> None:
        """
        With wait=True, return only once the server acknowledged the membership, so
        anything published to the room afterwards is delivered. Raises
        asyncio.TimeoutError when no acknowledgement arrives in time.
        """
        self._rooms.add(event_id)
        if self._ws is None:
            return
        if not wait:
            await self._send({"action": "join_event", "event_id": event_id})
            return
        ack = asyncio.get_running_loop().create_future()
        self._join_waiters[event_id].append(ack)
        try:
            await self._send({"action": "join_event", "event_id": event_id})
            await asyncio.wait_for(ack, settings.ws_ack_timeout_seconds if timeout is None else timeout)
        finally:
            waiters = self._join_waiters.get(event_id, [])
            if ack in waiters:
                waiters.remove(ack)
            if not waiters:
                self._join_waiters.pop(event_id, None)

    async def leave_room(self, event_id: str) -> None:
        self._rooms.discard(event_id)
        if self._ws is not None:
            await self._send({"action": "leave_event", "event_id": event_id})

    async def disconnect(self) -> None:
        ws, reader = self._ws, self._reader
        self._ws, self._reader = None, None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if ws is not None:
            await ws.close()

    def on(self, name: str, handler: Handler) -> None:
        self._handlers[name].append(handler)

    def off(self, name: str, handler: Handler | None = None) -> None:
        if handler is None:
            self._handlers.pop(name, None)
        elif handler in self._handlers.get(name, ()):
            self._handlers[name].remove(handler)

    async def _send(self, command: dict) -> None:
        await self._ws.send(json.dumps(command))

    async def dispatch(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
            name, data = msg["event"], msg.get("data")
        except (ValueError, KeyError, TypeError):
            log.warning("channel_message_malformed")
            return
        if name == JOINED and isinstance(data, dict):
            for ack in self._join_waiters.pop(str(data.get("event_id")), []):
                if not ack.done():
                    ack.set_result(None)
        await self._emit(name, data)

    async def _emit(self, name: str, data: Any) -> None:
        for handler in list(self._handlers.get(name, ())):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("channel_handler_failed", event_name=name)

    async def _dispatch_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self.dispatch(raw)
        except ConnectionClosed as e:
            log.info("channel_closed", code=getattr(e, "code", None))
        if self._ws is ws:
            self._ws, self._reader = None, None
            await self._emit(DISCONNECTED, None)
