"""
Checked RGBA8 views over caller-supplied pixel buffers.

A frame arrives as any C-contiguous bytes-like object.  It is validated
once -- byte-oriented, contiguous, whole pixels, exact frame size -- and
then exposed to the engine as a read-only ``(height, width, 4)`` uint8
array that shares memory with the caller's buffer.
"""

from __future__ import annotations

import numpy as np

from gifsession.exceptions import InvalidArgumentError

BYTES_PER_PIXEL = 4


def _as_byte_view(pixels: object) -> memoryview:
    if isinstance(pixels, np.ndarray) and pixels.dtype != np.uint8:
        raise InvalidArgumentError(
            "pixels", f"array dtype must be uint8, got {pixels.dtype}"
        )
    try:
        view = memoryview(pixels)
    except TypeError:
        raise InvalidArgumentError(
            "pixels",
            f"must be a bytes-like object, got {type(pixels).__name__}",
        ) from None
    if view.itemsize != 1:
        raise InvalidArgumentError(
            "pixels", f"must be a byte buffer, got item size {view.itemsize}"
        )
    if not view.c_contiguous:
        raise InvalidArgumentError("pixels", "buffer must be C-contiguous")
    return view.cast("B")


def rgba_view(pixels: object, width: int, height: int) -> np.ndarray:
    """Validate *pixels* as one RGBA8 frame and return a typed view.

    Raises
    ------
    InvalidArgumentError
        If the buffer is not byte-oriented, is not a whole number of
        4-byte pixels, or does not hold exactly ``width * height``
        pixels.
    """
    view = _as_byte_view(pixels)
    nbytes = view.nbytes
    if nbytes % BYTES_PER_PIXEL != 0:
        raise InvalidArgumentError(
            "pixels", "pixels must be in RGBA format, 4 bytes per pixel"
        )
    expected = width * height * BYTES_PER_PIXEL
    if nbytes != expected:
        raise InvalidArgumentError(
            "pixels",
            f"buffer holds {nbytes // BYTES_PER_PIXEL} pixels, "
            f"expected {width}x{height} ({expected} bytes)",
        )
    frame = np.frombuffer(view, dtype=np.uint8).reshape(
        height, width, BYTES_PER_PIXEL
    )
    frame.flags.writeable = False
    return frame
