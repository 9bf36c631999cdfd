"""Frame readback → PNG."""

import io

import numpy as np
from PIL import Image


def encode_png(pixels: bytes, size: tuple[int, int]) -> bytes:
    """Encode bottom-up RGB rows (GL readback order) as a top-down PNG."""
    width, height = size
    image = np.frombuffer(pixels, dtype=np.uint8).reshape((height, width, 3))
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(image[::-1])).save(buf, format="PNG")
    return buf.getvalue()
