"""Image payload helpers: data URLs and the blank placeholder."""
import base64
import binascii
from typing import Optional

# 1x1 white PNG shown whenever an image could not be generated
FALLBACK_BLANK_IMAGE = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8/x8AAwAB/aurH8kAAAAASUVORK5CYII="
)


def to_data_url(image_b64: str, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{image_b64}"


def strip_data_url(data: str) -> str:
    """Return the raw base64 payload of a data URL (plain base64 passes through)."""
    if data.startswith("data:"):
        _, _, payload = data.partition(",")
        if not payload:
            raise ValueError("Invalid image data URL")
        return payload
    return data


def fallback_image_b64() -> str:
    return strip_data_url(FALLBACK_BLANK_IMAGE)


def encode_image_bytes(raw) -> str:
    """google-genai returns bytes or an already base64-encoded str depending on SDK version."""
    if isinstance(raw, bytes):
        return base64.b64encode(raw).decode("utf-8")
    return raw


def decode_image_b64(image_b64: str) -> Optional[bytes]:
    try:
        return base64.b64decode(strip_data_url(image_b64), validate=True)
    except (binascii.Error, ValueError):
        return None
