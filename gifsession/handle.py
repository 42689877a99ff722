"""
Exclusively-owned engine handles.

An :class:`EngineHandle` wraps the raw value returned by an engine's
``create`` call.  Its only operations are the engine calls themselves,
and it guarantees the raw handle is released exactly once: by
``finish``, by ``release``, or by a ``weakref.finalize`` hook when the
owner is garbage collected or the interpreter exits.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any

import numpy as np

from gifsession.engines import EncodingEngine
from gifsession.exceptions import EngineFailure, InvalidStateError
from gifsession.types import EncoderSettings, EngineStatus

logger = logging.getLogger(__name__)


def _release_raw(engine: EncodingEngine, raw: Any) -> int:
    status = engine.release(raw)
    if status != EngineStatus.OK:
        logger.warning(
            "Releasing %s engine handle returned status %d", engine.name, status
        )
    return status


class EngineHandle:
    """A scoped, single-owner capability for one engine encoder."""

    def __init__(self, engine: EncodingEngine, raw: Any) -> None:
        self._engine = engine
        self._raw = raw
        self._finalizer = weakref.finalize(self, _release_raw, engine, raw)

    @classmethod
    def open(cls, engine: EncodingEngine, settings: EncoderSettings) -> EngineHandle:
        """Create a handle on *engine* configured with *settings*."""
        raw = engine.create(settings)
        if raw is None:
            raise EngineFailure(EngineStatus.NULL_ARG, "create")
        return cls(engine, raw)

    @property
    def engine_name(self) -> str:
        return self._engine.name

    @property
    def released(self) -> bool:
        return not self._finalizer.alive

    def _require_live(self) -> None:
        if not self._finalizer.alive:
            raise InvalidStateError("engine handle has already been released")

    def set_file_output(self, path: bytes) -> int:
        self._require_live()
        return self._engine.set_file_output(self._raw, path)

    def add_frame_rgba(
        self,
        index: int,
        width: int,
        height: int,
        frame: np.ndarray,
        timestamp: float,
    ) -> int:
        self._require_live()
        return self._engine.add_frame_rgba(
            self._raw, index, width, height, frame, timestamp,
        )

    def finish(self) -> int:
        """Complete the output and consume the handle.

        The release hook is detached first, so the raw handle is never
        touched again whatever ``finish`` returns or raises.
        """
        self._require_live()
        self._finalizer.detach()
        return self._engine.finish(self._raw)

    def release(self) -> int:
        """Discard the handle; a no-op returning OK once released."""
        if not self._finalizer.alive:
            return EngineStatus.OK
        return self._finalizer()

    def __enter__(self) -> EngineHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"<EngineHandle engine={self._engine.name!r} {state}>"
