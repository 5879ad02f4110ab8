from __future__ import annotations
from fastapi import APIRouter
import structlog
from app.schemas.actor import GuestSession, GuestSessionCreate
from app.security import make_guest_token
from app.services.identity import guest_identity

router = APIRouter(prefix="/guests", tags=["guests"])
log = structlog.get_logger()

@router.post("", response_model=GuestSession, status_code=201)
async def start_guest_session(payload: GuestSessionCreate):
    """
    Guests have no account. The identity that owns their uploads is minted here and
    only a request carrying the returned token can act as it.
    """
    name = payload.name.strip()
    identity = guest_identity(name)
    log.info("guest_session_started", guest_identity=identity)
    return GuestSession(token=make_guest_token(identity, name), guest_identity=identity, guest_name=name)
