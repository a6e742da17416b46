"""Flashcard image compression.

Cards carry their picture inline as a data URL, so images are shrunk
before they are attached: longest edge at most 800px, JPEG quality 70.
"""

import base64
import io
from typing import Union

from PIL import Image, ImageOps

MAX_EDGE = 800
JPEG_QUALITY = 70


def compress_image(data: Union[bytes, io.BufferedIOBase], max_size: int = MAX_EDGE,
                   quality: int = JPEG_QUALITY) -> str:
    """Downscale and re-encode an image as a JPEG data URL.

    Aspect ratio is preserved and small images are never upscaled.
    Transparency is flattened onto white.

    Args:
        data: Encoded image bytes (any format Pillow reads) or a binary file
        max_size: Longest edge of the result, in pixels
        quality: JPEG quality (1-95)

    Returns:
        ``data:image/jpeg;base64,...``

    Raises:
        ValueError: If the data is not a readable image
    """
    source = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data
    try:
        with Image.open(source) as img:
            img = ImageOps.exif_transpose(img)
            img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
            if img.mode in ("RGBA", "LA", "P"):
                img = img.convert("RGBA")
                background = Image.new("RGB", img.size, (255, 255, 255))
                background.paste(img, mask=img.getchannel("A"))
                img = background
            elif img.mode != "RGB":
                img = img.convert("RGB")
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=quality)
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Unreadable image: {e}") from e
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def data_url_size(url: str) -> tuple:
    """Pixel size (width, height) of an image data URL."""
    _, _, payload = url.partition(",")
    with Image.open(io.BytesIO(base64.b64decode(payload))) as img:
        return img.size
