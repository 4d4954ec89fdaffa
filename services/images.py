"""Image normalization for prompts.

Images are sent inline as base64 data URIs. Large photos are downscaled first
so the inline payload stays close to the per-image allowance.
"""

from __future__ import annotations

import base64
from io import BytesIO

from PIL import Image, UnidentifiedImageError

import config


class ImageConversionError(Exception):
    pass


def to_data_uri(image_bytes: bytes, *, max_edge: int | None = None) -> str:
    if not image_bytes:
        raise ImageConversionError("Empty image")
    max_edge = max_edge or config.MAX_IMAGE_EDGE_PX
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageConversionError(f"Unreadable image: {e}") from e

    has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
    img.thumbnail((max_edge, max_edge))

    out = BytesIO()
    if has_alpha:
        img.convert("RGBA").save(out, format="PNG", optimize=True)
        mime = "image/png"
    else:
        img.convert("RGB").save(out, format="JPEG", quality=85)
        mime = "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(out.getvalue()).decode('ascii')}"
