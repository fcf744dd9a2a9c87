"""Animated sticker transcoding (WebP container to GIF)."""

from __future__ import annotations

import io
import logging
from typing import List, Optional

from PIL import Image, ImageSequence

LOGGER = logging.getLogger(__name__)

DEFAULT_FRAME_MS = 100


def animated_webp_to_gif(data: bytes) -> Optional[bytes]:
    """Return GIF bytes for an animated WebP, or None when it cannot be converted."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            frames: List[Image.Image] = []
            durations: List[int] = []
            for frame in ImageSequence.Iterator(image):
                durations.append(int(frame.info.get("duration") or DEFAULT_FRAME_MS))
                frames.append(frame.convert("RGBA"))
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        LOGGER.warning("Failed to decode animated sticker: %s", exc)
        return None

    if not frames:
        return None

    output = io.BytesIO()
    try:
        frames[0].save(
            output,
            format="GIF",
            save_all=True,
            append_images=frames[1:],
            duration=durations,
            loop=0,
            disposal=2,
        )
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        LOGGER.warning("Failed to encode GIF from sticker: %s", exc)
        return None
    return output.getvalue()
