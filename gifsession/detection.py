"""
Engine auto-detection and system probing.

Discovers which encoding engines are usable, selects the best one
according to the priority chain, and provides diagnostics when the
preferred engine is missing.
"""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from typing import Dict, Optional

from gifsession.config import (
    ENGINE_ENV_VAR,
    preferred_engine_name,
    resolve_library_path,
)
from gifsession.engines import (
    ENGINE_PRIORITY,
    EncodingEngine,
    get_engine_by_name,
)
from gifsession.exceptions import EngineUnavailableError, InvalidArgumentError

logger = logging.getLogger(__name__)


@dataclass
class EngineProbe:
    """Result of probing a single engine."""
    name: str
    found: bool
    location: Optional[str]
    notes: Optional[str] = None


def probe_engines() -> Dict[str, EngineProbe]:
    """Probe every registered engine without instantiating it."""
    probes: Dict[str, EngineProbe] = {}
    for cls in ENGINE_PRIORITY:
        found = cls.is_available()
        location = None
        if cls.name == "gifski" and found:
            location = str(resolve_library_path())
        probes[cls.name] = EngineProbe(
            name=cls.name,
            found=found,
            location=location,
            notes=None if found else cls.install_hint(),
        )
    return probes


def select_engine(preferred: Optional[str] = None) -> EncodingEngine:
    """Return the best available engine.

    Priority:
      1. *preferred*, or $GIFSESSION_ENGINE when *preferred* is None.
      2. The first engine in ENGINE_PRIORITY that loads.

    An unknown *preferred* name raises InvalidArgumentError; an unknown
    name from the environment is logged and skipped.
    """
    from_env = preferred is None
    preferred = preferred or preferred_engine_name()
    if preferred is not None:
        try:
            engine = get_engine_by_name(preferred)
        except EngineUnavailableError as exc:
            logger.warning("Preferred engine '%s' not available: %s", preferred, exc)
        except InvalidArgumentError as exc:
            if not from_env:
                raise
            logger.warning("Ignoring $%s: %s", ENGINE_ENV_VAR, exc)
        else:
            logger.info("Using preferred engine: %s", engine.name)
            return engine

    for cls in ENGINE_PRIORITY:
        if not cls.is_available():
            continue
        try:
            engine = cls()
        except EngineUnavailableError as exc:
            logger.warning("Engine '%s' failed to load: %s", cls.name, exc)
            continue
        logger.info("Auto-selected engine: %s", engine.name)
        return engine

    raise EngineUnavailableError(
        "No GIF encoding engine is available. Install Pillow and numpy, "
        "or provide libgifski."
    )


def engine_diagnostics() -> str:
    """Return a human-readable diagnostics report."""
    lines = ["gifsession engine diagnostics", "=" * 40,
             f"Platform: {platform.system()} {platform.release()}",
             f"Python:   {platform.python_version()}", "",
             "Engines:"]
    for name, probe in probe_engines().items():
        status = "FOUND" if probe.found else "NOT FOUND"
        location = f"  [{probe.location}]" if probe.location else ""
        lines.append(f"  {name:20s} {status}{location}")
        if probe.notes:
            lines.append(f"    Install: {probe.notes}")
    lines.append("")
    try:
        engine = select_engine()
        lines.append(f"Selected engine: {engine.name}")
    except EngineUnavailableError:
        lines.append("Selected engine: NONE (see install instructions above)")
    return "\n".join(lines)
