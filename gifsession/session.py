"""
Encoding sessions: the validated, ordered front end to an engine handle.

A session moves through three phases::

    CREATED --set_output--> OUTPUT_SET --finish--> FINALIZED
                              |    ^
                              +----+ add_frame

Every argument is checked before it reaches the engine, every call is
checked against the current phase, and every nonzero engine status is
raised as :class:`~gifsession.exceptions.EngineFailure`.  The session is
the only source of frame sequence numbers.
"""

from __future__ import annotations

import logging
import math
import numbers
import os
import threading
from typing import Union

from gifsession.config import SessionConfig
from gifsession.detection import select_engine
from gifsession.engines import EncodingEngine, get_engine_by_name
from gifsession.exceptions import EngineFailure, InvalidArgumentError, InvalidStateError
from gifsession.handle import EngineHandle
from gifsession.pixels import rgba_view
from gifsession.types import EncoderSettings, EngineStatus, Phase

logger = logging.getLogger(__name__)

EngineChoice = Union[EncodingEngine, str, None]


def _resolve_engine(engine: EngineChoice) -> EncodingEngine:
    if engine is None:
        return select_engine()
    if isinstance(engine, str):
        return get_engine_by_name(engine.lower())
    return engine


class GifSession:
    """Build one animated GIF from RGBA8 frames.

    Parameters
    ----------
    width, height:
        Frame size in pixels; every frame must be ``width * height * 4``
        bytes.
    quality:
        Encoder quality, 1 -- 100.
    fast:
        Trade quality for encoding speed.
    repeat:
        ``-1`` plays once, ``0`` loops forever, ``n`` loops *n* times.
    engine:
        An engine instance, an engine name, or None to auto-select.

    Usage::

        with GifSession(320, 240) as gif:
            gif.set_output("out.gif")
            for i, frame in enumerate(frames):
                gif.add_frame(frame, i / 25)
            gif.finish()

    A session is meant for one caller.  Calls from several threads are
    serialized, never interleaved inside the engine.
    """

    def __init__(
        self,
        width: int,
        height: int,
        quality: int = 90,
        fast: bool = False,
        repeat: int = -1,
        *,
        engine: EngineChoice = None,
    ) -> None:
        settings = EncoderSettings(
            width=width, height=height, quality=quality, fast=fast, repeat=repeat,
        ).validate()
        resolved = _resolve_engine(engine)

        self._settings = settings
        self._handle = EngineHandle.open(resolved, settings)
        self._lock = threading.Lock()
        self._phase = Phase.CREATED
        self._frame_count = 0
        self._last_timestamp: float | None = None
        logger.debug(
            "Created %dx%d session on %s engine (quality=%d, fast=%s, repeat=%d)",
            settings.width, settings.height, resolved.name,
            settings.quality, settings.fast, settings.repeat,
        )

    @classmethod
    def from_settings(
        cls,
        settings: EncoderSettings | SessionConfig,
        engine: EngineChoice = None,
    ) -> GifSession:
        """Construct from :class:`EncoderSettings` or a loaded :class:`SessionConfig`."""
        if isinstance(settings, SessionConfig):
            engine = engine if engine is not None else settings.engine
            settings = settings.settings
        return cls(
            settings.width,
            settings.height,
            quality=settings.quality,
            fast=settings.fast,
            repeat=settings.repeat,
            engine=engine,
        )

    # ---- read-only state ------------------------------------------------

    @property
    def width(self) -> int:
        return self._settings.width

    @property
    def height(self) -> int:
        return self._settings.height

    @property
    def quality(self) -> int:
        return self._settings.quality

    @property
    def fast(self) -> bool:
        return self._settings.fast

    @property
    def repeat(self) -> int:
        return self._settings.repeat

    @property
    def settings(self) -> EncoderSettings:
        return self._settings

    @property
    def engine_name(self) -> str:
        return self._handle.engine_name

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def last_timestamp(self) -> float | None:
        return self._last_timestamp

    # ---- operations -----------------------------------------------------

    def set_output(self, destination: str | os.PathLike) -> None:
        """Direct the encoded GIF to the file at *destination*.

        Legal once, before any frame is added.  On an engine failure the
        session stays in the CREATED phase.
        """
        with self._lock:
            self._require_phase(Phase.CREATED, "set_output")
            c_path = _encode_path(destination)
            status = self._handle.set_file_output(c_path)
            self._check(status, "set_output")
            self._phase = Phase.OUTPUT_SET
            logger.debug("Output set to %s", os.fsdecode(c_path[:-1]))

    def add_frame(self, pixels: object, timestamp: float) -> None:
        """Submit the next frame, shown at *timestamp* seconds.

        *pixels* is a C-contiguous bytes-like object (``bytes``,
        ``bytearray``, ``memoryview`` or a uint8 numpy array) holding
        ``width * height`` row-major RGBA8 pixels.  Timestamps must not
        decrease, and only the first frame may sit at ``0.0``.
        """
        with self._lock:
            self._require_phase(Phase.OUTPUT_SET, "add_frame")
            frame = rgba_view(pixels, self.width, self.height)
            timestamp = self._check_timestamp(timestamp)

            index = self._frame_count
            status = self._handle.add_frame_rgba(
                index, self.width, self.height, frame, timestamp,
            )
            self._check(status, "add_frame")
            self._frame_count = index + 1
            self._last_timestamp = timestamp
            logger.debug("Accepted frame %d at %.3fs", index, timestamp)

    def finish(self) -> None:
        """Flush all frames, write the trailer and close the output.

        The session is finalized whatever the outcome; a failed finish
        cannot be retried.
        """
        with self._lock:
            self._require_phase(Phase.OUTPUT_SET, "finish")
            self._phase = Phase.FINALIZED
            status = self._handle.finish()
            self._check(status, "finish")
            logger.info(
                "Finished %dx%d GIF with %d frames",
                self.width, self.height, self._frame_count,
            )

    def close(self) -> None:
        """Discard the session without finishing it.

        Any output already written may be incomplete.  Idempotent; a
        nonzero release status is logged, not raised.
        """
        with self._lock:
            if self._phase is not Phase.FINALIZED:
                logger.debug(
                    "Discarding session in phase %s after %d frames",
                    self._phase.value, self._frame_count,
                )
            self._phase = Phase.FINALIZED
            self._handle.release()

    def __enter__(self) -> GifSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"<GifSession {self.width}x{self.height} "
            f"phase={self._phase.value} frames={self._frame_count}>"
        )

    # ---- internals ------------------------------------------------------

    def _require_phase(self, expected: Phase, operation: str) -> None:
        if self._phase is expected:
            return
        if self._phase is Phase.FINALIZED:
            message = f"{operation}() called on a finalized session"
        elif self._phase is Phase.CREATED:
            message = f"{operation}() requires set_output() to be called first"
        else:
            message = f"{operation}() called after the output was already set"
        raise InvalidStateError(message, phase=self._phase)

    def _check_timestamp(self, timestamp: object) -> float:
        if isinstance(timestamp, bool) or not isinstance(timestamp, numbers.Real):
            raise InvalidArgumentError(
                "timestamp",
                f"must be a number of seconds, got {type(timestamp).__name__}",
            )
        timestamp = float(timestamp)
        if self._frame_count > 0 and timestamp == 0.0:
            raise InvalidArgumentError(
                "timestamp", "only the first frame may have timestamp 0"
            )
        if not math.isfinite(timestamp) or timestamp < 0:
            raise InvalidArgumentError(
                "timestamp", f"must be a finite, non-negative number, got {timestamp}"
            )
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            raise InvalidArgumentError(
                "timestamp",
                f"{timestamp} is earlier than the previous frame "
                f"({self._last_timestamp})",
            )
        return timestamp

    @staticmethod
    def _check(status: int, operation: str) -> None:
        if status != EngineStatus.OK:
            logger.debug("%s returned engine status %d", operation, status)
            raise EngineFailure(status, operation)


def _encode_path(destination: object) -> bytes:
    """Encode *destination* as a NUL-terminated filesystem path."""
    try:
        path = os.fsencode(destination)
    except TypeError:
        raise InvalidArgumentError(
            "destination",
            f"must be a path, got {type(destination).__name__}",
        ) from None
    if not path:
        raise InvalidArgumentError("destination", "must not be empty")
    if b"\0" in path:
        raise InvalidArgumentError("destination", "must not contain NUL bytes")
    return path + b"\0"
