from __future__ import annotations
from typing import Tuple
from PIL import Image, ImageOps, UnidentifiedImageError
import piexif
import io


ALLOWED_IMAGE_MIME = {"image/jpeg", "image/png", "image/webp"}
ALLOWED_VIDEO_MIME = {"video/mp4", "video/quicktime", "video/webm", "video/x-matroska"}
EXT_FOR_MIME = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-matroska": "mkv",
}
_FORMAT_MIME = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}

def sniff_mime(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _FORMAT_MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None

def kind_for_mime(mime: str | None) -> str:
    return "video" if (mime or "").startswith("video/") else "image"

def analyze_image(data: bytes) -> Tuple[str, dict]:
    """
    Returns (mime, exif_dict_or_empty).
    Raises ValueError for anything that is not a decodable JPEG/PNG/WebP.
    """
    mime = sniff_mime(data)
    if mime not in ALLOWED_IMAGE_MIME:
        raise ValueError("Unsupported image type")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValueError("Invalid image file")
    exif = {}
    if mime == "image/jpeg":
        try:
            exif = piexif.load(data)
        except Exception:
            exif = {}
    return mime, exif

def normalize_orientation(data: bytes, mime: str) -> bytes:
    """Bake the EXIF orientation into the pixels so every viewer sees the photo upright."""
    with Image.open(io.BytesIO(data)) as img:
        orientation = img.getexif().get(0x0112, 1)
        if orientation in (None, 1):
            return data
        upright = ImageOps.exif_transpose(img)
        out = io.BytesIO()
        fmt = {"image/jpeg": "JPEG", "image/png": "PNG", "image/webp": "WEBP"}[mime]
        if fmt == "JPEG":
            upright.convert("RGB").save(out, format=fmt, quality=95)
        else:
            upright.save(out, format=fmt)
        return out.getvalue()

def make_preview(data: bytes, max_px: int = 400, quality: int = 80) -> bytes:
    """Fit inside max_px x max_px without enlarging; progressive JPEG."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        img.thumbnail((max_px, max_px))
        out = io.BytesIO()
        img.convert("RGB").save(out, format="JPEG", quality=quality, progressive=True)
        return out.getvalue()

def ext_for_mime(mime: str) -> str:
    return EXT_FOR_MIME.get(mime, "bin")
