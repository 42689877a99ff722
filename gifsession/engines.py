"""
Encoding engines behind the session's handle-based contract.

Every engine implements the same five calls:

    create(settings)                                  -> raw handle | None
    set_file_output(raw, path)                        -> status
    add_frame_rgba(raw, index, width, height, frame,
                   timestamp)                         -> status
    finish(raw)                                       -> status (consumes raw)
    release(raw)                                      -> status (consumes raw)

Status ``0`` is success; every other value is an
:class:`~gifsession.types.EngineStatus` code.  Engines trust their
caller for ordering and argument shape: the session layer is the only
place those are enforced.

Engine priority (highest to lowest):
    1. gifski  -- native libgifski via ctypes, best quality
    2. pillow  -- pure Python on Pillow + numpy, always available
"""

from __future__ import annotations

import abc
import ctypes
import logging
import math
import os
import platform
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Optional

import numpy as np
from PIL import Image

from gifsession.config import resolve_library_path
from gifsession.exceptions import EngineUnavailableError, InvalidArgumentError
from gifsession.types import EncoderSettings, EngineStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class EncodingEngine(abc.ABC):
    """Abstract interface that every encoding engine must implement."""

    name: str = "abstract"

    @abc.abstractmethod
    def create(self, settings: EncoderSettings) -> Any:
        """Allocate a raw handle configured with *settings*, or return None."""

    @abc.abstractmethod
    def set_file_output(self, raw: Any, path: bytes) -> int:
        """Stream output to the NUL-terminated file path *path*."""

    @abc.abstractmethod
    def add_frame_rgba(
        self,
        raw: Any,
        index: int,
        width: int,
        height: int,
        frame: np.ndarray,
        timestamp: float,
    ) -> int:
        """Queue one ``(height, width, 4)`` RGBA8 frame at *timestamp* seconds."""

    @abc.abstractmethod
    def finish(self, raw: Any) -> int:
        """Flush, write the trailer, close the output and free *raw*."""

    @abc.abstractmethod
    def release(self, raw: Any) -> int:
        """Free *raw* without completing the animation."""

    @staticmethod
    @abc.abstractmethod
    def is_available() -> bool:
        """Return True if this engine's dependencies are satisfied."""

    @staticmethod
    @abc.abstractmethod
    def install_hint() -> str:
        """Human-readable install instructions for the current platform."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status_for_os_error(exc: OSError, default: EngineStatus) -> EngineStatus:
    """Map an OSError raised while touching the destination to a status."""
    if isinstance(exc, FileNotFoundError):
        return EngineStatus.NOT_FOUND
    if isinstance(exc, PermissionError):
        return EngineStatus.PERMISSION_DENIED
    if isinstance(exc, FileExistsError):
        return EngineStatus.ALREADY_EXISTS
    if isinstance(exc, (IsADirectoryError, NotADirectoryError)):
        return EngineStatus.INVALID_INPUT
    if isinstance(exc, InterruptedError):
        return EngineStatus.INTERRUPTED
    if isinstance(exc, TimeoutError):
        return EngineStatus.TIMED_OUT
    return default


def _decode_path(path: bytes) -> str:
    return os.fsdecode(path.rstrip(b"\0"))


# ---------------------------------------------------------------------------
# 1. Pillow
# ---------------------------------------------------------------------------

DEFAULT_FRAME_MS = 100
MIN_FRAME_MS = 10             # GIF delays are stored in 1/100 s units


@dataclass
class _PendingFrame:
    """A queued frame, and after merging, the run of duplicates it covers."""
    pixels: np.ndarray
    timestamp: float
    delay_ms: int = DEFAULT_FRAME_MS
    indices: list[int] = field(default_factory=list)


@dataclass
class _PillowEncoder:
    """State behind one PillowEngine raw handle."""
    settings: EncoderSettings
    output: Optional[BinaryIO] = None
    output_path: str = ""
    frames: Dict[int, _PendingFrame] = field(default_factory=dict)
    closed: bool = False


def palette_size(quality: int) -> int:
    """Number of palette entries used for a quality setting in [1, 100]."""
    return max(2, min(256, round(256 * quality / 100)))


def resolve_delays(timestamps: List[float]) -> List[int]:
    """Turn presentation timestamps (seconds) into per-frame delays (ms).

    Each frame is shown until the next one's timestamp.  The last frame
    reuses the preceding delay, or DEFAULT_FRAME_MS for a single frame.
    """
    delays: List[int] = []
    for current, following in zip(timestamps, timestamps[1:]):
        delays.append(max(MIN_FRAME_MS, round((following - current) * 1000)))
    if timestamps:
        delays.append(delays[-1] if delays else DEFAULT_FRAME_MS)
    return delays


def merge_duplicate_frames(frames: List[_PendingFrame]) -> List[_PendingFrame]:
    """Merge consecutive identical frames, summing their delays."""
    merged: List[_PendingFrame] = []
    for frame in frames:
        if merged and np.array_equal(merged[-1].pixels, frame.pixels):
            merged[-1].delay_ms += frame.delay_ms
            merged[-1].indices.extend(frame.indices)
        else:
            merged.append(frame)
    return merged


def quantize_frames(
    images: List[Image.Image],
    colors: int,
    fast: bool,
) -> List[Image.Image]:
    """Reduce RGB frames to palette images.

    Fast mode quantizes each frame independently with the fast-octree
    method and no dithering.  Otherwise a single global palette is built
    from a mosaic of (at most 64) sampled frames with median cut, and
    every frame is remapped to it with Floyd-Steinberg dithering.
    """
    if fast:
        return [
            img.quantize(
                colors=colors,
                method=Image.Quantize.FASTOCTREE,
                dither=Image.Dither.NONE,
            )
            for img in images
        ]

    frame_w, frame_h = images[0].size
    sample_indices = list(range(len(images)))
    if len(images) > 64:
        step = len(images) / 64
        sample_indices = [int(i * step) for i in range(64)]

    cols = min(len(sample_indices), 8)
    rows = math.ceil(len(sample_indices) / cols)
    mosaic = Image.new("RGB", (frame_w * cols, frame_h * rows))
    for idx, frame_idx in enumerate(sample_indices):
        r, c = divmod(idx, cols)
        mosaic.paste(images[frame_idx], (c * frame_w, r * frame_h))

    palette_img = mosaic.quantize(
        colors=colors,
        method=Image.Quantize.MEDIANCUT,
        dither=Image.Dither.NONE,
    )
    return [
        img.quantize(palette=palette_img, dither=Image.Dither.FLOYDSTEINBERG)
        for img in images
    ]


class PillowEngine(EncodingEngine):
    """Pure-Python engine: buffers frames, encodes with Pillow at finish.

    The destination file is created as soon as the output is set, so
    path problems surface from ``set_file_output`` rather than at the
    end.  Alpha is discarded; frames are encoded as opaque RGB.
    """

    name = "pillow"

    @staticmethod
    def is_available() -> bool:
        return True

    @staticmethod
    def install_hint() -> str:
        return "pip install Pillow numpy"

    def create(self, settings):
        return _PillowEncoder(settings=settings)

    def set_file_output(self, raw, path):
        if raw is None or not path or path == b"\0":
            return EngineStatus.NULL_ARG
        if raw.closed or raw.output is not None:
            return EngineStatus.INVALID_STATE
        target = _decode_path(path)
        try:
            raw.output = open(target, "wb")
        except OSError as exc:
            status = _status_for_os_error(exc, EngineStatus.OTHER)
            logger.debug("Cannot open %s for writing: %s", target, exc)
            return status
        raw.output_path = target
        return EngineStatus.OK

    def add_frame_rgba(self, raw, index, width, height, frame, timestamp):
        if raw is None or frame is None:
            return EngineStatus.NULL_ARG
        if raw.closed or raw.output is None:
            return EngineStatus.INVALID_STATE
        settings = raw.settings
        if (width, height) != (settings.width, settings.height):
            return EngineStatus.INVALID_INPUT
        if frame.shape != (height, width, 4) or frame.dtype != np.uint8:
            return EngineStatus.INVALID_INPUT
        if index in raw.frames:
            return EngineStatus.INVALID_STATE
        raw.frames[index] = _PendingFrame(
            pixels=frame.copy(),
            timestamp=float(timestamp),
            indices=[index],
        )
        return EngineStatus.OK

    def finish(self, raw):
        if raw is None:
            return EngineStatus.NULL_ARG
        if raw.closed:
            return EngineStatus.INVALID_STATE
        try:
            if raw.output is None:
                status = EngineStatus.INVALID_STATE
            elif not raw.frames:
                logger.debug("No frames queued for %s", raw.output_path)
                status = EngineStatus.INVALID_INPUT
            else:
                status = self._write(raw)
        finally:
            close_status = self._close(raw)
        if status != EngineStatus.OK:
            return status
        return close_status

    def release(self, raw):
        if raw is None:
            return EngineStatus.NULL_ARG
        return self._close(raw)

    def _write(self, raw: _PillowEncoder) -> int:
        settings = raw.settings
        pending = [raw.frames[i] for i in sorted(raw.frames)]
        for frame, delay in zip(
            pending, resolve_delays([f.timestamp for f in pending])
        ):
            frame.delay_ms = delay
        merged = merge_duplicate_frames(pending)
        if len(merged) < len(pending):
            logger.debug(
                "Merged %d duplicate frames", len(pending) - len(merged)
            )

        images = [
            Image.fromarray(np.ascontiguousarray(f.pixels)).convert("RGB")
            for f in merged
        ]
        try:
            p_frames = quantize_frames(
                images, colors=palette_size(settings.quality), fast=settings.fast,
            )
        except (ValueError, MemoryError) as exc:
            logger.debug("Quantization failed: %s", exc)
            return EngineStatus.QUANT
        except Exception as exc:
            logger.warning("Unexpected quantizer error: %s", exc, exc_info=True)
            return EngineStatus.GIF

        save_kwargs: dict[str, Any] = {
            "format": "GIF",
            "save_all": True,
            "append_images": p_frames[1:],
            "duration": [f.delay_ms for f in merged],
            "optimize": not settings.fast,
            "disposal": 1,                    # Leave frame in place
        }
        if settings.repeat >= 0:
            save_kwargs["loop"] = settings.repeat
        try:
            p_frames[0].save(raw.output, **save_kwargs)
            raw.output.flush()
        except OSError as exc:
            logger.debug("Writing %s failed: %s", raw.output_path, exc)
            return _status_for_os_error(exc, EngineStatus.WRITE_ZERO)
        except ValueError as exc:
            logger.debug("GIF encoding failed: %s", exc)
            return EngineStatus.GIF
        except Exception as exc:
            logger.warning("Unexpected GIF encoder error: %s", exc, exc_info=True)
            return EngineStatus.GIF
        return EngineStatus.OK

    @staticmethod
    def _close(raw: _PillowEncoder) -> int:
        raw.closed = True
        raw.frames.clear()
        if raw.output is None or raw.output.closed:
            return EngineStatus.OK
        try:
            raw.output.close()
        except OSError as exc:
            logger.debug("Closing %s failed: %s", raw.output_path, exc)
            return _status_for_os_error(exc, EngineStatus.WRITE_ZERO)
        return EngineStatus.OK


# ---------------------------------------------------------------------------
# 2. gifski (native library)
# ---------------------------------------------------------------------------

class _GifskiSettings(ctypes.Structure):
    _fields_ = [
        ("width", ctypes.c_uint32),
        ("height", ctypes.c_uint32),
        ("quality", ctypes.c_uint8),
        ("fast", ctypes.c_bool),
        ("repeat", ctypes.c_int16),
    ]


def _load_gifski() -> ctypes.CDLL:
    location = resolve_library_path()
    if location is None:
        raise EngineUnavailableError(
            "libgifski not found. "
            f"Install it or set $GIFSESSION_LIBGIFSKI.\n"
            f"Install: {GifskiLibraryEngine.install_hint()}"
        )
    try:
        lib = ctypes.CDLL(str(location))
    except OSError as exc:
        raise EngineUnavailableError(f"Cannot load {location}: {exc}") from exc

    lib.gifski_new.argtypes = [ctypes.POINTER(_GifskiSettings)]
    lib.gifski_new.restype = ctypes.c_void_p
    lib.gifski_set_file_output.argtypes = [ctypes.c_void_p, ctypes.c_char_p]
    lib.gifski_set_file_output.restype = ctypes.c_int
    lib.gifski_add_frame_rgba.argtypes = [
        ctypes.c_void_p,
        ctypes.c_uint32,
        ctypes.c_uint32,
        ctypes.c_uint32,
        ctypes.POINTER(ctypes.c_uint8),
        ctypes.c_double,
    ]
    lib.gifski_add_frame_rgba.restype = ctypes.c_int
    lib.gifski_finish.argtypes = [ctypes.c_void_p]
    lib.gifski_finish.restype = ctypes.c_int
    logger.debug("Loaded libgifski from %s", location)
    return lib


class GifskiLibraryEngine(EncodingEngine):
    """Engine backed by the native libgifski C API.

    Raw handles are the ``void *`` values returned by ``gifski_new``.
    The library has no separate free call: ``gifski_finish`` is the only
    way to release a handle, so ``release`` goes through it too.
    """

    name = "gifski"

    def __init__(self) -> None:
        self._lib = _load_gifski()

    @staticmethod
    def is_available() -> bool:
        return resolve_library_path() is not None

    @staticmethod
    def install_hint() -> str:
        os_name = platform.system()
        if os_name == "Darwin":
            return "brew install gifski"
        if os_name == "Linux":
            return "Build libgifski with `cargo build --release --lib` from the gifski sources."
        return "Build libgifski from https://github.com/ImageOptim/gifski"

    def create(self, settings):
        c_settings = _GifskiSettings(
            width=settings.width,
            height=settings.height,
            quality=settings.quality,
            fast=settings.fast,
            repeat=settings.repeat,
        )
        return self._lib.gifski_new(ctypes.byref(c_settings))

    def set_file_output(self, raw, path):
        return self._lib.gifski_set_file_output(raw, path)

    def add_frame_rgba(self, raw, index, width, height, frame, timestamp):
        buffer = frame.ctypes.data_as(ctypes.POINTER(ctypes.c_uint8))
        return self._lib.gifski_add_frame_rgba(
            raw, index, width, height, buffer, timestamp,
        )

    def finish(self, raw):
        return self._lib.gifski_finish(raw)

    def release(self, raw):
        return self._lib.gifski_finish(raw)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ENGINE_PRIORITY: List[type] = [
    GifskiLibraryEngine,
    PillowEngine,
]

_ENGINE_BY_NAME: Dict[str, type] = {cls.name: cls for cls in ENGINE_PRIORITY}


def get_engine_by_name(name: str) -> EncodingEngine:
    """Instantiate an engine by its short name."""
    cls = _ENGINE_BY_NAME.get(name)
    if cls is None:
        raise InvalidArgumentError(
            "engine",
            f"unknown engine '{name}'. Available: {list(_ENGINE_BY_NAME.keys())}",
        )
    if not cls.is_available():
        raise EngineUnavailableError(
            f"Engine '{name}' is not available on this system.\n"
            f"Install: {cls.install_hint()}"
        )
    return cls()
