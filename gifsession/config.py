"""
Runtime configuration and native-library discovery.

Settings come from three places: explicit constructor arguments, a YAML
settings file, and two environment variables:

    GIFSESSION_ENGINE      preferred engine name ("gifski" or "pillow")
    GIFSESSION_LIBGIFSKI   path to a libgifski shared library
"""

from __future__ import annotations

import ctypes.util
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from gifsession.exceptions import ConfigError, InvalidArgumentError
from gifsession.types import EncoderSettings

ENGINE_ENV_VAR = "GIFSESSION_ENGINE"
LIBRARY_ENV_VAR = "GIFSESSION_LIBGIFSKI"

_SETTINGS_KEYS = frozenset(
    {"width", "height", "quality", "fast", "repeat", "engine"}
)


@dataclass(frozen=True)
class SessionConfig:
    """Encoder settings plus the engine they should be handed to."""

    settings: EncoderSettings
    engine: str | None = None     # None = auto-select


def preferred_engine_name() -> str | None:
    """Return the engine named in $GIFSESSION_ENGINE, if any."""
    value = os.environ.get(ENGINE_ENV_VAR, "").strip().lower()
    return value or None


def resolve_library_path() -> Path | str | None:
    """Locate libgifski, preferring $GIFSESSION_LIBGIFSKI over the loader path.

    Returns a filesystem path when the environment variable points at an
    existing file, a loader name from ``ctypes.util.find_library``, or
    None when the library cannot be found.
    """
    explicit = os.environ.get(LIBRARY_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser()
        return path if path.is_file() else None
    return ctypes.util.find_library("gifski")


def parse_settings(data: Any, source: str = "<settings>") -> SessionConfig:
    """Build a validated :class:`SessionConfig` from a parsed mapping."""
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: expected a mapping at top level.")

    unknown = set(data) - _SETTINGS_KEYS
    if unknown:
        raise ConfigError(
            f"{source}: unknown setting(s) {sorted(unknown)}. "
            f"Allowed: {sorted(_SETTINGS_KEYS)}"
        )
    missing = {"width", "height"} - set(data)
    if missing:
        raise ConfigError(f"{source}: missing required setting(s) {sorted(missing)}")

    engine = data.get("engine")
    if engine is not None and not isinstance(engine, str):
        raise ConfigError(f"{source}: engine must be a string.")

    fields = {k: v for k, v in data.items() if k != "engine"}
    try:
        settings = EncoderSettings(**fields).validate()
    except InvalidArgumentError as exc:
        raise ConfigError(f"{source}: {exc}") from exc
    return SessionConfig(settings=settings, engine=engine.lower() if engine else None)


def load_settings(path: Path | str) -> SessionConfig:
    """Read encoder settings from a YAML file.

    Example file::

        width: 320
        height: 240
        quality: 80
        fast: false
        repeat: 0
        engine: pillow
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read settings file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    return parse_settings(data, source=str(path))
