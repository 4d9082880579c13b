"""
Image utility functions for decoding and validating uploaded photos.
"""
import base64
import binascii
import io
import re
from logging import getLogger
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from sevispass.config import get_config
from sevispass.services.identity.errors import InputValidationError

MAX_IMAGE_WIDTH = get_config("max_image_width", 4000)
MAX_IMAGE_HEIGHT = get_config("max_image_height", 4000)
MIN_IMAGE_WIDTH = get_config("min_image_width", 100)
MIN_IMAGE_HEIGHT = get_config("min_image_height", 100)
MAX_IMAGE_BYTES = get_config("max_image_bytes", 5 * 1024 * 1024)
ALLOWED_FORMATS = get_config("allowed_formats", {'JPEG', 'PNG'})

logger = getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")

CONTENT_TYPES = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
}


def validate_image(image: Image.Image) -> Tuple[bool, Optional[str]]:
    """
    Validate image dimensions and format.

    Args:
        image: PIL Image object

    Returns:
        Tuple of (is_valid, error_message)
    """
    width, height = image.size

    if width < MIN_IMAGE_WIDTH or height < MIN_IMAGE_HEIGHT:
        return False, f"Image too small. Minimum size: {MIN_IMAGE_WIDTH}x{MIN_IMAGE_HEIGHT}"

    if width > MAX_IMAGE_WIDTH or height > MAX_IMAGE_HEIGHT:
        return False, f"Image too large. Maximum size: {MAX_IMAGE_WIDTH}x{MAX_IMAGE_HEIGHT}"

    if image.format not in ALLOWED_FORMATS:
        return False, f"Unsupported format. Allowed: {', '.join(sorted(ALLOWED_FORMATS))}"

    return True, None


def bytes_to_image(image_bytes: bytes) -> Image.Image:
    """
    Convert bytes to PIL Image.

    Args:
        image_bytes: Image bytes

    Returns:
        PIL Image object
    """
    return Image.open(io.BytesIO(image_bytes))


def decode_base64_image(data: Optional[str], field: str) -> bytes:
    """
    Decode a base64 image (optionally a data URL) and validate it.

    Args:
        data: Base64 string as sent by the client
        field: Request field name, reported back on failure

    Returns:
        Raw image bytes, unchanged

    Raises:
        InputValidationError: missing, undecodable, too big or not an allowed image
    """
    if not data or not data.strip():
        raise InputValidationError(field, f"{field} is required")

    payload = DATA_URL_PREFIX.sub("", data.strip())
    try:
        image_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InputValidationError(field, f"{field} is not valid base64")

    if not image_bytes:
        raise InputValidationError(field, f"{field} is empty")
    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise InputValidationError(field, f"{field} exceeds {MAX_IMAGE_BYTES // (1024 * 1024)} MB")

    try:
        image = bytes_to_image(image_bytes)
        image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.warning(f"Undecodable image in {field}: {str(e)}")
        raise InputValidationError(field, f"{field} is not a readable image")

    is_valid, error_msg = validate_image(image)
    if not is_valid:
        raise InputValidationError(field, error_msg or "Invalid image")

    return image_bytes


def content_type_for(image_bytes: bytes) -> str:
    try:
        fmt = bytes_to_image(image_bytes).format
    except (UnidentifiedImageError, OSError):
        return 'application/octet-stream'
    return CONTENT_TYPES.get(fmt, 'application/octet-stream')
