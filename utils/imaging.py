import io
import base64
import binascii
from typing import Optional

from PIL import Image, UnidentifiedImageError

JPEG_QUALITY = 90
DATA_URL_PREFIX = "data:image/jpeg;base64,"


def decode_image_base64(data: str) -> bytes:
    """Accepts raw base64 or a data URL. Raises ValueError on malformed input."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e


def open_image(image_bytes: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
        return image
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Unsupported or corrupt image: {e}") from e


def describe_image(image_bytes: bytes) -> str:
    """Short textual summary used when the model cannot take image input."""
    image = open_image(image_bytes)
    width, height = image.size
    orientation = "landscape" if width > height else "portrait" if height > width else "square"
    small = image.convert("RGB").resize((1, 1))
    r, g, b = small.getpixel((0, 0))
    brightness = (r * 299 + g * 587 + b * 114) // 1000
    tone = "bright" if brightness > 170 else "dark" if brightness < 85 else "medium-toned"
    fmt = image.format or "unknown"
    return f"{fmt} image, {width}x{height} pixels, {orientation}, {tone} (average color rgb({r}, {g}, {b}))"


def scale_image(image_bytes: bytes, max_dimension: Optional[int], quality: int = JPEG_QUALITY) -> bytes:
    """Re-encodes as JPEG, shrinking so the longest edge fits `max_dimension` (None keeps the size)."""
    image = open_image(image_bytes).convert("RGB")
    if max_dimension and max(image.size) > max_dimension:
        image.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def to_data_url(jpeg_bytes: bytes) -> str:
    return DATA_URL_PREFIX + base64.b64encode(jpeg_bytes).decode("ascii")
