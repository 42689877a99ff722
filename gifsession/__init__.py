"""
gifsession -- Validated, ordered sessions over an animated-GIF encoder.

A GifSession owns one encoding-engine handle and guarantees that calls
reach the engine in a legal order with legal arguments, surfacing every
engine failure as a structured exception.
"""

__version__ = "0.1.0"

from gifsession.config import SessionConfig, load_settings
from gifsession.engines import EncodingEngine, GifskiLibraryEngine, PillowEngine
from gifsession.exceptions import (
    ConfigError,
    EngineFailure,
    EngineUnavailableError,
    GifSessionError,
    InvalidArgumentError,
    InvalidStateError,
)
from gifsession.session import GifSession
from gifsession.types import EncoderSettings, EngineStatus, Phase

__all__ = [
    "ConfigError",
    "EncoderSettings",
    "EncodingEngine",
    "EngineFailure",
    "EngineStatus",
    "EngineUnavailableError",
    "GifSession",
    "GifSessionError",
    "GifskiLibraryEngine",
    "InvalidArgumentError",
    "InvalidStateError",
    "PillowEngine",
    "Phase",
    "SessionConfig",
    "load_settings",
]
