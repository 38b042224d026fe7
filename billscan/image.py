"""Image utilities for receipt uploads using Pillow"""
import base64
import io
import logging
from typing import Optional

from PIL import Image


logger = logging.getLogger(__name__)

MAX_WIDTH = 800
JPEG_QUALITY = 50


def detect_mime_type(file_bytes: bytes, filename: str = "") -> Optional[str]:
    """Detect the image type from magic bytes, then the filename"""
    if file_bytes.startswith(b'\x89PNG'):
        return 'image/png'
    if file_bytes.startswith(b'\xff\xd8\xff'):
        return 'image/jpeg'
    if file_bytes[:4] == b'RIFF' and file_bytes[8:12] == b'WEBP':
        return 'image/webp'
    if file_bytes[4:12] in (b'ftypheic', b'ftypheix', b'ftypmif1'):
        return 'image/heic'

    name = filename.lower()
    if name.endswith('.png'):
        return 'image/png'
    if name.endswith(('.jpg', '.jpeg')):
        return 'image/jpeg'
    if name.endswith('.webp'):
        return 'image/webp'
    if name.endswith(('.heic', '.heif')):
        return 'image/heic'
    return None


def compress_image(image_bytes: bytes, max_width: int = MAX_WIDTH, quality: int = JPEG_QUALITY) -> bytes:
    """Shrink an image to at most ``max_width`` pixels wide and re-encode as JPEG"""
    img = Image.open(io.BytesIO(image_bytes))
    if img.width > max_width:
        height = max(1, round(img.height * max_width / img.width))
        img = img.resize((max_width, height))
    if img.mode != "RGB":
        img = img.convert("RGB")

    buffered = io.BytesIO()
    img.save(buffered, format="JPEG", quality=quality)
    return buffered.getvalue()


def image_to_data_uri(image_bytes: bytes) -> Optional[str]:
    """Compressed ``data:`` URI for storing alongside a saved bill.

    Returns None when the image can't be decoded, so the bill is saved
    without a picture rather than not at all.
    """
    try:
        compressed = compress_image(image_bytes)
    except Exception as e:
        logger.warning("Failed to compress image: %s", e)
        return None
    return "data:image/jpeg;base64," + base64.b64encode(compressed).decode("utf-8")
