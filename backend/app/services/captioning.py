from __future__ import annotations
import base64
import httpx
import structlog
from app.config import settings

log = structlog.get_logger()

CAPTION_PROMPT = (
    "Write a short, fun, and engaging caption (max 10 words) for this photo taken at an event. "
    "Do not use quotes."
)

async def caption_image(data: bytes, client: httpx.AsyncClient | None = None) -> str:
    """
    Ask the vision model for a caption. Never raises: any failure yields the
    configured default so an upload is never blocked on captioning.
    """
    payload = {
        "model": settings.caption_model,
        "prompt": CAPTION_PROMPT,
        "images": [base64.b64encode(data).decode("ascii")],
        "stream": False,
    }
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.caption_timeout_seconds) as ac:
                r = await ac.post(settings.caption_url, json=payload)
        else:
            r = await client.post(settings.caption_url, json=payload)
        r.raise_for_status()
        text = str(r.json().get("response") or "").strip().strip('"')
    except (httpx.HTTPError, ValueError) as e:
        log.info("caption_fallback", reason=type(e).__name__)
        return settings.caption_default
    return text or settings.caption_default
