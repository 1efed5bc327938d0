"""
Media Check — Decode validation for recovered image parts.

Office containers keep pictures under word/media/, xl/media/ and
ppt/media/.  A picture that inflates cleanly can still be garbage (a
false-positive header, or a stream rebuilt from the wrong bytes), so the
pipeline asks Pillow to decode it.  The result only adds a report note;
the entry content is never changed.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

# Image extensions that Pillow can decode
_PILLOW_EXTS = {
    "jpg", "jpeg", "png", "gif", "bmp", "tiff", "tif", "webp", "ico",
}

# Above this size only the header is verified
_FULL_DECODE_LIMIT = 10 * 1024 * 1024


def is_image_part(path: str) -> bool:
    return "." in path and path.rsplit(".", 1)[-1].lower() in _PILLOW_EXTS


def validate_image(data: bytes) -> tuple[bool, str]:
    """Try to decode image data with Pillow.  Returns (ok, reason)."""
    if not data:
        return False, "empty image data"
    try:
        img = Image.open(io.BytesIO(data))
        # .verify() checks structure; .load() catches truncated pixel data
        img.verify()
        img = Image.open(io.BytesIO(data))
        if len(data) < _FULL_DECODE_LIMIT:
            img.load()
        w, h = img.size
        return True, f"Image OK ({w}x{h}, {img.mode})"
    except Exception as e:
        err = str(e)
        logger.debug("Pillow rejected %d-byte image: %s", len(data), err)
        if "truncated" in err.lower():
            return False, f"Image truncated: {err}"
        if "cannot identify" in err.lower():
            return False, f"Not a valid image: {err}"
        return False, f"Image decode failed: {err}"
