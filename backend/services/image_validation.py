import base64
import binascii
import logging
from dataclasses import dataclass
from io import BytesIO

from fastapi import HTTPException, status
from PIL import Image, UnidentifiedImageError

from schemas.generate import ImagePayload

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})
MAX_IMAGE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB decoded
MIN_IMAGE_WIDTH = 64
MIN_IMAGE_HEIGHT = 64
MAX_IMAGE_PIXELS = 16_777_216  # 16 MP

IMAGE_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-jpg": "image/jpeg",
    "image/x-jpeg": "image/jpeg",
    "image/jfif": "image/jpeg",
    "image/apng": "image/png",
    "image/x-png": "image/png",
    "image/x-webp": "image/webp",
}


@dataclass(frozen=True)
class ImagePayloadInfo:
    mime_type: str
    size_bytes: int
    width: int
    height: int


def normalize_image_mime_type(claimed_mime_type: str) -> str:
    mime_type = (claimed_mime_type or "").strip()
    if ";" in mime_type:
        mime_type = mime_type.split(";", 1)[0]
    mime_type = mime_type.strip().lower()
    return IMAGE_MIME_ALIASES.get(mime_type, mime_type)


def sniff_image_mime_type(content: bytes) -> str | None:
    """
    Best-effort MIME sniffing by magic bytes.

    Returns normalized mime_type ("image/png", "image/jpeg", "image/webp") or None.
    """
    if not content:
        return None
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def decode_base64_image(data: str, *, max_size: int = MAX_IMAGE_SIZE_BYTES) -> bytes:
    # Reject before decoding: base64 inflates by 4/3.
    if len(data) > (max_size * 4) // 3 + 4:
        raise _bad_request(f"Image exceeds the {max_size // (1024 * 1024)}MB limit")
    try:
        content = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise _bad_request("Image data is not valid base64")
    if len(content) > max_size:
        raise _bad_request(f"Image exceeds the {max_size // (1024 * 1024)}MB limit")
    return content


def _detect_image_dimensions(content: bytes) -> tuple[int, int]:
    try:
        with Image.open(BytesIO(content)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError, ValueError):
        raise _bad_request(
            "Unsupported or corrupted image file. Please upload PNG, JPG, or WEBP."
        )
    if width <= 0 or height <= 0:
        raise _bad_request("Invalid image dimensions")
    return width, height


def validate_image_payload(payload: ImagePayload, *, field_name: str = "image") -> ImagePayloadInfo:
    """
    Validate an inline base64 image and return canonical metadata.

    Rules:
    - Accept PNG/JPEG/WEBP by actual magic bytes.
    - A claimed MIME type that disagrees with the bytes is logged and the
      sniffed type wins.
    - Reject tiny images that are unusable for pose analysis.
    """
    content = decode_base64_image(payload.data)
    if len(content) < 12:
        raise _bad_request(f"{field_name}: file too small to be a valid image")

    claimed = normalize_image_mime_type(payload.mime_type)
    sniffed = sniff_image_mime_type(content)
    if sniffed is None:
        raise _bad_request(f"{field_name}: invalid file type. Allowed: PNG, JPG, WEBP")

    if claimed != sniffed:
        logger.warning(
            "Claimed MIME type mismatch for %s (claimed=%s, sniffed=%s); using sniffed MIME",
            field_name,
            claimed,
            sniffed,
        )

    width, height = _detect_image_dimensions(content)
    if width < MIN_IMAGE_WIDTH or height < MIN_IMAGE_HEIGHT:
        raise _bad_request(
            f"{field_name}: image is too small ({width}x{height}). "
            f"Minimum supported size is {MIN_IMAGE_WIDTH}x{MIN_IMAGE_HEIGHT}."
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise _bad_request(
            f"{field_name}: image has too many pixels ({width * height}). "
            f"Maximum supported pixel count is {MAX_IMAGE_PIXELS}."
        )

    return ImagePayloadInfo(
        mime_type=sniffed, size_bytes=len(content), width=width, height=height
    )


def normalize_image_payload(payload: ImagePayload, *, field_name: str = "image") -> ImagePayload:
    """Validate ``payload`` and return a copy carrying the sniffed MIME type."""
    info = validate_image_payload(payload, field_name=field_name)
    if info.mime_type == payload.mime_type:
        return payload
    return payload.model_copy(update={"mime_type": info.mime_type})
