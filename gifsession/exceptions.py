"""
Custom exception hierarchy for gifsession.

All gifsession exceptions inherit from GifSessionError so callers can
catch the entire family with a single except clause.  Argument and state
errors also derive from the matching built-in exception.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gifsession.types import EngineStatus, Phase


class GifSessionError(Exception):
    """Base exception for all gifsession errors."""


class InvalidArgumentError(GifSessionError, ValueError):
    """Raised before any engine call when an argument is out of range."""

    def __init__(self, parameter: str, message: str) -> None:
        super().__init__(f"{parameter}: {message}")
        self.parameter = parameter
        self.message = message

    def __reduce__(self):
        return (self.__class__, (self.parameter, self.message))


class InvalidStateError(GifSessionError, RuntimeError):
    """Raised when an operation is not legal in the session's phase."""

    def __init__(self, message: str, phase: Phase | None = None) -> None:
        super().__init__(message)
        self.phase = phase

    def __reduce__(self):
        return (self.__class__, (self.args[0], self.phase))


class EngineFailure(GifSessionError):
    """Raised when the encoding engine returns a nonzero status code.

    ``code`` is the raw integer reported by the engine.  ``status`` is
    the matching :class:`~gifsession.types.EngineStatus` member, or
    ``None`` when the engine reported a code outside the known table.
    """

    def __init__(self, code: int, operation: str) -> None:
        from gifsession.types import EngineStatus

        self.code = int(code)
        self.operation = operation
        try:
            self.status: EngineStatus | None = EngineStatus(self.code)
        except ValueError:
            self.status = None
        if self.status is not None:
            detail = f"{self.status.name.lower()}: {self.status.description}"
        else:
            detail = "unknown engine error"
        super().__init__(f"{operation} failed with code {self.code} ({detail})")

    def __reduce__(self):
        return (self.__class__, (self.code, self.operation))


class EngineUnavailableError(GifSessionError):
    """Raised when no usable encoding engine is installed."""


class ConfigError(GifSessionError):
    """Raised when a settings file is unreadable or malformed."""
