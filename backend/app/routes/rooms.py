from __future__ import annotations
import json
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import jwt
import structlog
from app.security import decode_token
from app.services.broadcast import hub, envelope

router = APIRouter()
log = structlog.get_logger()

@router.websocket("/ws")
async def room_socket(ws: WebSocket) -> None:
    """
    One connection per viewer. Commands (JSON text frames):
      {"action": "join_event", "event_id": ...}
      {"action": "leave_event", "event_id": ...}
      {"action": "authenticate", "token": ...}   -> per-user channel
    Every command is acknowledged so a client knows when its membership is live.
    """
    await ws.accept()
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
                action = msg.get("action")
            except (ValueError, AttributeError):
                await ws.send_text(envelope("error", {"detail": "Malformed command"}))
                continue

            if action == "join_event" and msg.get("event_id"):
                hub.join(str(msg["event_id"]), ws)
                await ws.send_text(envelope("joined", {"event_id": msg["event_id"]}))
            elif action == "leave_event" and msg.get("event_id"):
                hub.leave(str(msg["event_id"]), ws)
                await ws.send_text(envelope("left", {"event_id": msg["event_id"]}))
            elif action == "authenticate":
                try:
                    data = decode_token(str(msg.get("token") or ""))
                except jwt.PyJWTError:
                    await ws.send_text(envelope("error", {"detail": "Invalid token"}))
                    continue
                if data.get("type") != "access":
                    await ws.send_text(envelope("error", {"detail": "Wrong token type"}))
                    continue
                hub.subscribe_user(str(data.get("sub")), ws)
                await ws.send_text(envelope("authenticated", {"user_id": data.get("sub")}))
            elif action == "ping":
                await ws.send_text(envelope("pong", {}))
            else:
                await ws.send_text(envelope("error", {"detail": f"Unknown action: {action}"}))
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(ws)
        log.debug("room_socket_closed")
