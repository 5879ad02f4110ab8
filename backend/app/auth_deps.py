from __future__ import annotations
from typing import Any
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
import jwt
from app.db import get_session
from app.security import decode_token
from app.models.user import User
from app.schemas.actor import Actor, UserSnapshot
from app.services.identity import is_guest_identity

security = HTTPBearer(auto_error=False)

def _claims(token: str) -> dict[str, Any]:
    try:
        return decode_token(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

async def _user(data: dict[str, Any], session: AsyncSession) -> User:
    user = await session.get(User, data.get("sub"))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user

async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_guest_name: str | None = Header(default=None, alias="X-Guest-Name"),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    """
    Bearer access token -> account holder; bearer guest token -> guest owning the
    identity the server issued. Without a token the caller is an anonymous guest
    known only by display name and owns nothing.
    """
    if credentials is None:
        return Actor(guest_name=(x_guest_name or "").strip() or None)
    data = _claims(credentials.credentials)
    kind = data.get("type")
    if kind == "access":
        user = await _user(data, session)
        return Actor(user=UserSnapshot.model_validate(user))
    if kind == "guest" and is_guest_identity(data.get("sub")):
        return Actor(guest_name=data.get("name") or None, guest_identity=data["sub"])
    raise HTTPException(status_code=401, detail="Wrong token type")
