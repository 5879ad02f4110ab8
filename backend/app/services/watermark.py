from __future__ import annotations
import base64, binascii, io
from PIL import Image, ImageDraw, ImageFont, ImageOps
import piexif
import structlog

log = structlog.get_logger()

WATERMARK_TAG = "EVENTSNAP_WATERMARK"
_FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",  # Linux
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",  # macOS
    "arialbd.ttf",  # Windows
]

def decode_logo(logo_url: str | None) -> bytes | None:
    """Logos are stored as base64 data URIs; anything else is ignored."""
    if not logo_url or not logo_url.startswith("data:"):
        return None
    try:
        return base64.b64decode(logo_url.split(",", 1)[1], validate=False)
    except (IndexError, binascii.Error):
        return None

def _load_font(px: int):
    for path in _FONT_PATHS:
        try:
            return ImageFont.truetype(path, px)
        except (OSError, IOError):
            continue
    return ImageFont.load_default()

def _anchor(position: str, canvas: tuple[int, int], mark: tuple[int, int], off_x: int, off_y: int) -> tuple[int, int]:
    width, height = canvas
    mw, mh = mark
    dx, dy = int(width * off_x / 100), int(height * off_y / 100)
    if position == "top-left":
        return dx, dy
    if position == "top-right":
        return width - mw - dx, dy
    if position == "bottom-left":
        return dx, height - mh - dy
    if position == "center":
        return (width - mw) // 2, (height - mh) // 2
    return width - mw - dx, height - mh - dy

def apply_watermark(
    image_data: bytes,
    text: str | None,
    logo: bytes | None = None,
    opacity: float | None = None,
    size: int | None = None,
    position: str | None = None,
    offset_x: int | None = None,
    offset_y: int | None = None,
) -> bytes:
    """
    Rasterize a studio logo (preferred) or studio name onto an image and stamp an
    EXIF marker. Always returns JPEG bytes.
    """
    opacity = 0.5 if opacity is None else opacity
    size = 20 if size is None else size
    position = position or "bottom-right"
    offset_x = 2 if offset_x is None else offset_x
    offset_y = 2 if offset_y is None else offset_y

    with Image.open(io.BytesIO(image_data)) as src:
        base = ImageOps.exif_transpose(src).convert("RGBA")
        exif_bytes = src.info.get("exif")

    width, height = base.size
    target_w = max(1, int(width * size / 100))
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    alpha = int(255 * opacity)

    mark = None
    if logo:
        try:
            with Image.open(io.BytesIO(logo)) as lg:
                mark = lg.convert("RGBA")
            ratio = target_w / mark.width
            mark = mark.resize((target_w, max(1, int(mark.height * ratio))))
            faded = mark.getchannel("A").point(lambda a: int(a * opacity))
            mark.putalpha(faded)
            layer.paste(mark, _anchor(position, base.size, mark.size, offset_x, offset_y), mark)
        except (OSError, ValueError) as e:
            log.warning("watermark_logo_unreadable", error=str(e))
            mark = None

    if mark is None and text:
        draw = ImageDraw.Draw(layer)
        font_px = max(10, int(target_w / max(len(text), 1) * 1.8))
        font = _load_font(font_px)
        bbox = draw.textbbox((0, 0), text, font=font)
        text_size = (bbox[2] - bbox[0], bbox[3] - bbox[1])
        x, y = _anchor(position, base.size, text_size, offset_x, offset_y)
        draw.text((x - bbox[0], y - bbox[1]), text, fill=(255, 255, 255, alpha), font=font)

    watermarked = Image.alpha_composite(base, layer).convert("RGB")

    try:
        exif_dict = piexif.load(exif_bytes) if exif_bytes else {"0th": {}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None}
    except Exception:
        exif_dict = {"0th": {}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None}
    exif_dict["Exif"][piexif.ExifIFD.UserComment] = f"{WATERMARK_TAG}:{text or 'logo'}".encode()
    exif_dict["0th"][piexif.ImageIFD.Software] = b"EventSnap"
    # orientation has been baked into the pixels above
    exif_dict["0th"].pop(piexif.ImageIFD.Orientation, None)

    output = io.BytesIO()
    try:
        watermarked.save(output, format="JPEG", exif=piexif.dump(exif_dict), quality=92)
    except Exception as e:
        log.warning("watermark_exif_dump_failed", error=str(e))
        output = io.BytesIO()
        watermarked.save(output, format="JPEG", quality=92)
    return output.getvalue()

def read_watermark(image_data: bytes) -> str | None:
    """Return the text recorded by apply_watermark, or None if the image carries no marker."""
    try:
        exif_dict = piexif.load(image_data)
    except Exception:
        return None
    comment = exif_dict.get("Exif", {}).get(piexif.ExifIFD.UserComment)
    if not comment:
        return None
    value = comment.decode("utf-8", errors="ignore")
    if not value.startswith(f"{WATERMARK_TAG}:"):
        return None
    return value.split(":", 1)[1]
