"""
Core data structures shared by the session and the encoding engines.
"""

from __future__ import annotations

import enum
import numbers
from dataclasses import dataclass, replace

from gifsession.exceptions import InvalidArgumentError

# GIF logical screen dimensions are 16-bit.
MAX_DIMENSION = 65535
# The engine settings struct stores repeat as a signed 16-bit value.
MAX_REPEAT = 32767


class Phase(enum.Enum):
    """Position of a session in its lifecycle."""
    CREATED = "created"
    OUTPUT_SET = "output_set"
    FINALIZED = "finalized"


class EngineStatus(enum.IntEnum):
    """Status codes returned by the encoding engine."""
    OK = 0
    NULL_ARG = 1
    INVALID_STATE = 2
    QUANT = 3
    GIF = 4
    THREAD_LOST = 5
    NOT_FOUND = 6
    PERMISSION_DENIED = 7
    ALREADY_EXISTS = 8
    INVALID_INPUT = 9
    TIMED_OUT = 10
    WRITE_ZERO = 11
    INTERRUPTED = 12
    UNEXPECTED_EOF = 13
    ABORTED = 14
    OTHER = 15

    @property
    def description(self) -> str:
        return _STATUS_DESCRIPTIONS[self]


_STATUS_DESCRIPTIONS: dict[EngineStatus, str] = {
    EngineStatus.OK: "success",
    EngineStatus.NULL_ARG: "a required argument was missing",
    EngineStatus.INVALID_STATE: "call is not valid in the engine's current state",
    EngineStatus.QUANT: "color quantization failed",
    EngineStatus.GIF: "GIF stream encoding failed",
    EngineStatus.THREAD_LOST: "an encoder worker terminated unexpectedly",
    EngineStatus.NOT_FOUND: "destination path not found",
    EngineStatus.PERMISSION_DENIED: "permission denied",
    EngineStatus.ALREADY_EXISTS: "target already exists",
    EngineStatus.INVALID_INPUT: "invalid input",
    EngineStatus.TIMED_OUT: "operation timed out",
    EngineStatus.WRITE_ZERO: "output could not be written",
    EngineStatus.INTERRUPTED: "operation was interrupted",
    EngineStatus.UNEXPECTED_EOF: "unexpected end of data",
    EngineStatus.ABORTED: "encoding was aborted",
    EngineStatus.OTHER: "unspecified engine error",
}


_INT_FIELDS = ("width", "height", "quality", "repeat")


def _require_int(name: str, value: object) -> int:
    # bool is an int subclass but never a valid dimension or count.
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidArgumentError(
            name, f"must be an integer, got {type(value).__name__}"
        )
    return int(value)


@dataclass(frozen=True)
class EncoderSettings:
    """Fixed encoding options handed to the engine at handle creation.

    ``repeat`` follows the engine convention: ``-1`` plays once, ``0``
    loops forever, ``n > 0`` loops *n* times.
    """
    width: int
    height: int
    quality: int = 90
    fast: bool = False
    repeat: int = -1

    def validate(self) -> EncoderSettings:
        """Check every field and return the settings with plain int fields.

        Integral values such as numpy integers are accepted and converted;
        already-normalized settings are returned unchanged.

        Raises
        ------
        InvalidArgumentError
            Naming the first offending parameter.
        """
        dimensions = {}
        for name in ("width", "height"):
            value = _require_int(name, getattr(self, name))
            dimensions[name] = value
            if value <= 0:
                raise InvalidArgumentError(name, "must be greater than 0")
            if value > MAX_DIMENSION:
                raise InvalidArgumentError(
                    name, f"must be at most {MAX_DIMENSION}"
                )

        quality = _require_int("quality", self.quality)
        if not 1 <= quality <= 100:
            raise InvalidArgumentError("quality", "must be between 1 and 100")

        if not isinstance(self.fast, bool):
            raise InvalidArgumentError(
                "fast", f"must be a bool, got {type(self.fast).__name__}"
            )

        repeat = _require_int("repeat", self.repeat)
        if repeat < -1:
            raise InvalidArgumentError("repeat", "must be -1, 0, or positive")
        if repeat > MAX_REPEAT:
            raise InvalidArgumentError("repeat", f"must be at most {MAX_REPEAT}")

        if all(type(getattr(self, name)) is int for name in _INT_FIELDS):
            return self
        return replace(self, quality=quality, repeat=repeat, **dimensions)

    @property
    def frame_nbytes(self) -> int:
        """Exact byte length of one RGBA8 frame."""
        return self.width * self.height * 4
