# panelgen/lib/imaging.py
from __future__ import annotations

import base64
import hashlib
import io
import re
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from panelgen.logger import get_logger

log = get_logger(__name__)

_DATAURL_RE = re.compile(r"^data:([\w/+.-]+);base64,(.*)$", re.IGNORECASE | re.DOTALL)

_EXT_TO_TYPE = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

def _sniff_ext_from_bytes(data: bytes) -> str:
    # PNG
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    # JPEG
    if data.startswith(b"\xff\xd8"):
        return ".jpg"
    # GIF87a / GIF89a
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return ".gif"
    # WEBP: RIFF....WEBP
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ".webp"
    return ""  # unknown

def sniff_content_type(data: bytes, default: str = "application/octet-stream") -> str:
    return _EXT_TO_TYPE.get(_sniff_ext_from_bytes(data), default)

def is_data_url(s: str) -> bool:
    return s.startswith("data:") and ";base64," in s

def looks_like_raw_base64(s: str) -> bool:
    if len(s) < 200:
        return False
    return bool(re.fullmatch(r"[A-Za-z0-9+/=\s]+", s))

def is_inline_image(s: str) -> bool:
    return is_data_url(s) or looks_like_raw_base64(s)

def decode_image_b64(image_b64: str) -> Tuple[bytes, str]:
    """
    Returns (bytes, content_type). Supports 'data:image/png;base64,...' or raw base64.
    The content type comes from the bytes when they are recognisable.
    """
    if not image_b64:
        raise ValueError("empty base64")
    s = image_b64.strip()
    m = _DATAURL_RE.match(s)
    payload = m.group(2) if m else s
    # Normalize whitespace and padding
    payload = "".join(payload.split())
    missing_padding = (-len(payload)) % 4
    if missing_padding:
        payload += "=" * missing_padding
    data = base64.b64decode(payload)

    content_type = sniff_content_type(data, default="")
    if not content_type:
        if m and m.group(1).lower().startswith("image/"):
            content_type = m.group(1).lower()
        else:
            raise ValueError("Unsupported image format")
    return data, content_type

def to_data_url(data: bytes, content_type: str | None = None) -> str:
    ctype = content_type or sniff_content_type(data, default="image/png")
    return f"data:{ctype};base64,{base64.b64encode(data).decode('ascii')}"

def content_hash(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()

def verify_image(data: bytes) -> str:
    """Check that `data` decodes as an image; return its content type."""
    if not data:
        raise ValueError("empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as im:
            fmt = (im.format or "").lower()
            im.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"not a decodable image: {e}") from e
    return {"jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp", "gif": "image/gif"}.get(
        fmt, sniff_content_type(data, default="image/png")
    )

def shrink_image(data: bytes, max_side: int) -> Tuple[bytes, str]:
    """
    Downscale so the longer side is at most `max_side`. Images already small
    enough come back untouched. Images with alpha stay PNG, others become JPEG.
    """
    with Image.open(io.BytesIO(data)) as im:
        if max_side <= 0 or max(im.size) <= max_side:
            return data, sniff_content_type(data, default="image/png")
        before = im.size
        im = im.copy()
        im.thumbnail((max_side, max_side))
        buf = io.BytesIO()
        if im.mode in ("RGBA", "LA", "P"):
            im.save(buf, format="PNG", optimize=True)
            ctype = "image/png"
        else:
            im.convert("RGB").save(buf, format="JPEG", quality=85)
            ctype = "image/jpeg"
    log.debug(f"shrunk reference {before} -> {im.size}")
    return buf.getvalue(), ctype
