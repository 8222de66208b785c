import io
from pathlib import Path

from PIL import Image

THUMBNAIL_MAX_SIZE = (800, 1200)
JPEG_QUALITY = 80


def optimize_image(source, max_size=THUMBNAIL_MAX_SIZE, quality: int = JPEG_QUALITY) -> bytes:
    """Shrink to fit `max_size` (aspect preserved, never enlarged) and re-encode as JPEG."""
    img = Image.open(source).convert("RGB")
    img.thumbnail(max_size)

    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def jpeg_name(file_name: str) -> str:
    return f"{Path(file_name).stem}.jpg"
