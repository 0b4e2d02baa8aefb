"""
Image normalization: validate format, downsize, re-encode as JPEG.
"""

import io
import structlog
from PIL import Image, UnidentifiedImageError

from app.config import SUPPORTED_IMAGE_TYPES
from app.core.errors import EmptyPayloadError, InputError, UnsupportedFormatError

logger = structlog.get_logger()

MAX_DIMENSION = 512
JPEG_QUALITY = 90


def is_format_supported(mime_type: str) -> bool:
    return mime_type in SUPPORTED_IMAGE_TYPES


def normalize_image(data: bytes, mime_type: str, max_dimension: int = MAX_DIMENSION) -> bytes:
    """
    Resize an image to fit within max_dimension x max_dimension and convert to JPEG.

    Aspect ratio is preserved and images are never enlarged.
    """
    if not is_format_supported(mime_type):
        raise UnsupportedFormatError(mime_type)
    if not data:
        raise EmptyPayloadError("Image payload is empty")

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Could not decode image", mime_type=mime_type, error=str(e))
        raise InputError(f"Could not decode {mime_type} image: {e}")

    original_size = image.size
    if image.mode != 'RGB':
        image = image.convert('RGB')

    if image.width > max_dimension or image.height > max_dimension:
        image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    output = io.BytesIO()
    image.save(output, format="JPEG", quality=JPEG_QUALITY)

    logger.debug("Image normalized", original_size=original_size, normalized_size=image.size)
    return output.getvalue()
