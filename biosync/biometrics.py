import base64
import binascii
import re
from typing import Any, Mapping

from biosync.errors import InvalidPayload

_WHITESPACE = re.compile(r"\s+")

DATA_URI_PREFIX = "data:image"
FALLBACK_PREFIX = "data:image;base64,"

# Checked in order; the first matching signature wins.
IMAGE_SIGNATURES = (
    ("/9j/", "data:image/jpeg;base64,"),
    ("iVBOR", "data:image/png;base64,"),
    ("R0lGOD", "data:image/gif;base64,"),
)


def sanitize(raw: Any) -> str:
    """
    Reduce a biometric payload returned by the directory to bare base64.

    The directory answers with a plain base64 string, a data URI, or an
    object wrapping either under ``photo``. Anything else means "no data"
    and yields an empty string.
    """
    if isinstance(raw, str):
        payload = raw
    elif isinstance(raw, Mapping) and raw.get("photo"):
        payload = str(raw["photo"])
    else:
        return ""

    if "," in payload:
        payload = payload.rsplit(",", 1)[-1]

    return _WHITESPACE.sub("", payload)


def infer_image_src(payload: str) -> str:
    """Turn a base64 payload into something an <img> tag can display."""
    if payload.startswith(DATA_URI_PREFIX):
        return payload
    for signature, prefix in IMAGE_SIGNATURES:
        if payload.startswith(signature):
            return f"{prefix}{payload}"
    return f"{FALLBACK_PREFIX}{payload}"


def validate_editable(candidate: str) -> str:
    """
    Check a hand-edited payload before it replaces the stored one.
    Returns the trimmed payload, raises InvalidPayload if it is not base64.
    """
    trimmed = candidate.strip()
    try:
        base64.b64decode(trimmed, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayload(f"Invalid base64 payload: {e}") from e
    return trimmed
