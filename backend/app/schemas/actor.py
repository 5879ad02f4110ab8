from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal

Role = Literal["ADMIN", "USER", "PHOTOGRAPHER"]
TierLevel = Literal["FREE", "BASIC", "PRO", "STUDIO"]
WatermarkPosition = Literal["top-left", "top-right", "bottom-left", "bottom-right", "center"]


class UserSnapshot(BaseModel):
    """What the client knows about an account: quota, tier and studio branding."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    role: Role = "USER"
    tier: TierLevel = "FREE"
    storage_used_mb: float = 0.0
    storage_limit_mb: float = 100.0  # -1 = unlimited
    studio_name: str | None = None
    logo_url: str | None = None
    watermark_opacity: float | None = Field(default=None, ge=0.1, le=1.0)
    watermark_size: int | None = Field(default=None, ge=5, le=50)  # % of image width
    watermark_position: WatermarkPosition | None = None
    watermark_offset_x: int | None = Field(default=None, ge=0, le=50)
    watermark_offset_y: int | None = Field(default=None, ge=0, le=50)


class Actor(BaseModel):
    """Whoever performs an action: an account holder or a guest with a display name."""
    user: UserSnapshot | None = None
    guest_name: str | None = None
    guest_identity: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.user is None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == "ADMIN"

    @property
    def role(self) -> Role | None:
        return self.user.role if self.user else None

    @property
    def identity(self) -> str:
        if self.user:
            return self.user.id
        return self.guest_identity or ""

    @property
    def display_name(self) -> str:
        if self.user:
            return self.user.studio_name or self.user.name
        return self.guest_name or "Guest"

    def is_host_of(self, host_id: str | None) -> bool:
        return self.user is not None and host_id is not None and self.user.id == host_id


class GuestSessionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=60)


class GuestSession(BaseModel):
    """A server-issued guest identity and the bearer token that proves it."""
    token: str
    guest_identity: str
    guest_name: str
