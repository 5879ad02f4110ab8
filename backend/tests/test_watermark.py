import base64, io
from PIL import Image
import piexif
from app.services.watermark import apply_watermark, read_watermark, decode_logo, WATERMARK_TAG

def _photo(size=(800, 600), color=(20, 20, 20), orientation=None) -> bytes:
    out = io.BytesIO()
    kwargs = {}
    if orientation:
        kwargs["exif"] = piexif.dump({"0th": {piexif.ImageIFD.Orientation: orientation}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None})
    Image.new("RGB", size, color).save(out, format="JPEG", **kwargs)
    return out.getvalue()

def _logo_uri() -> str:
    out = io.BytesIO()
    Image.new("RGBA", (40, 20), (255, 0, 0, 255)).save(out, format="PNG")
    return "data:image/png;base64," + base64.b64encode(out.getvalue()).decode()

def _pixel(data: bytes, xy) -> tuple:
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGB").getpixel(xy)

def test_text_watermark_marks_pixels_and_exif():
    original = _photo()
    marked = apply_watermark(original, "Lumen Studio", position="bottom-right", size=40, opacity=1.0)
    assert read_watermark(marked) == "Lumen Studio"
    assert read_watermark(original) is None
    exif = piexif.load(marked)
    assert exif["0th"][piexif.ImageIFD.Software] == b"EventSnap"
    with Image.open(io.BytesIO(marked)) as img:
        assert img.format == "JPEG" and img.size == (800, 600)
        # some pixel near the bottom-right corner got lighter
        region = img.convert("L").crop((400, 450, 800, 600))
        assert max(region.getdata()) > 100

def test_logo_preferred_over_text():
    marked = apply_watermark(_photo(), "Lumen", logo=decode_logo(_logo_uri()), position="top-left",
                             size=25, opacity=1.0, offset_x=0, offset_y=0)
    r, g, b = _pixel(marked, (10, 10))
    assert r > 150 and g < 100 and b < 100
    assert read_watermark(marked) == "Lumen"

def test_unreadable_logo_falls_back_to_text():
    marked = apply_watermark(_photo(), "Lumen", logo=b"not a png")
    assert read_watermark(marked) == "Lumen"

def test_orientation_is_baked_in():
    marked = apply_watermark(_photo(size=(800, 600), orientation=6), "Lumen")
    with Image.open(io.BytesIO(marked)) as img:
        assert img.size == (600, 800)
    assert piexif.ImageIFD.Orientation not in piexif.load(marked)["0th"]

def test_decode_logo_only_accepts_data_uris():
    assert decode_logo(None) is None
    assert decode_logo("https://cdn.example.com/logo.png") is None
    assert decode_logo("data:image/png;base64,aGk=") == b"hi"

def test_tag_prefix():
    marked = apply_watermark(_photo(), None, logo=decode_logo(_logo_uri()))
    comment = piexif.load(marked)["Exif"][piexif.ExifIFD.UserComment].decode()
    assert comment == f"{WATERMARK_TAG}:logo"
