from __future__ import annotations
import math
from pydantic import BaseModel
from app.schemas.actor import Actor, UserSnapshot


class TierConfig(BaseModel):
    storage_limit_mb: float
    allow_video: bool
    allow_branding: bool
    allow_watermark: bool


TIER_CONFIG: dict[str, TierConfig] = {
    "FREE": TierConfig(storage_limit_mb=100, allow_video=False, allow_branding=False, allow_watermark=False),
    "BASIC": TierConfig(storage_limit_mb=10240, allow_video=False, allow_branding=False, allow_watermark=False),
    "PRO": TierConfig(storage_limit_mb=30720, allow_video=True, allow_branding=True, allow_watermark=True),
    "STUDIO": TierConfig(storage_limit_mb=102400, allow_video=True, allow_branding=True, allow_watermark=True),
}

ADMIN_CONFIG = TierConfig(storage_limit_mb=math.inf, allow_video=True, allow_branding=True, allow_watermark=True)


def tier_config_for(user: UserSnapshot | None) -> TierConfig:
    # Admins are unlimited regardless of tier; no account means FREE
    if user is not None and user.role == "ADMIN":
        return ADMIN_CONFIG
    return TIER_CONFIG[user.tier if user else "FREE"]


def governing_tier_config(actor: Actor, host: UserSnapshot | None) -> TierConfig:
    """
    Capability of an upload is a property of the event: a contributor to someone
    else's event is governed by the host's tier, the host by their own.
    """
    if actor.is_host_of(host.id if host else None) or host is None:
        return tier_config_for(actor.user)
    if actor.is_admin:
        return ADMIN_CONFIG
    return tier_config_for(host)


def exceeds_quota(used_mb: float, limit_mb: float, size_mb: float) -> bool:
    if limit_mb < 0:
        return False
    return used_mb + size_mb > limit_mb
