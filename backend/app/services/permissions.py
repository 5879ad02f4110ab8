from __future__ import annotations
from app.schemas.actor import Actor


def can_modify_media(actor: Actor, uploader_identity: str, host_id: str) -> bool:
    """Admin, the event host, or whoever uploaded the item."""
    if actor.is_admin or actor.is_host_of(host_id):
        return True
    return bool(actor.identity) and actor.identity == uploader_identity


def can_view_media(actor: Actor | None, visibility: str, uploader_identity: str, host_id: str | None) -> bool:
    if visibility == "public":
        return True
    if actor is None:
        return False
    return can_modify_media(actor, uploader_identity, host_id or "")
