from __future__ import annotations
import re, time, uuid

_GUEST_NAME_RE = re.compile(r"[^A-Za-z0-9_.]+")


def guest_identity(name: str, ts_ms: int | None = None) -> str:
    """guest-<name>-<timestamp ms>; establishes ownership of uploads, not authentication."""
    clean = _GUEST_NAME_RE.sub("_", name.strip()).strip("_") or "anon"
    return f"guest-{clean}-{ts_ms if ts_ms is not None else int(time.time() * 1000)}"


def is_guest_identity(value: str | None) -> bool:
    return bool(value) and value.startswith("guest-")


def new_media_id() -> str:
    return f"media-{uuid.uuid4().hex}"
