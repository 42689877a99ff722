"""
Shared fixtures for the gifsession test suite.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from gifsession.engines import EncodingEngine
from gifsession.types import EngineStatus


@dataclass
class RecordedHandle:
    """Opaque raw handle handed out by RecordingEngine."""
    serial: int
    settings: object


class RecordingEngine(EncodingEngine):
    """In-memory engine that records every call it receives.

    ``fail`` maps an engine call name ("set_file_output",
    "add_frame_rgba", "finish", "release") to the status it should
    return instead of OK.  Setting ``fail_create`` makes ``create``
    return None.
    """

    name = "recording"

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail: dict[str, int] = {}
        self.fail_create = False
        self.released: list[RecordedHandle] = []
        self.finished: list[RecordedHandle] = []
        self._serial = 0

    @staticmethod
    def is_available() -> bool:
        return True

    @staticmethod
    def install_hint() -> str:
        return "built into the test suite"

    def create(self, settings):
        self.calls.append(("create", settings))
        if self.fail_create:
            return None
        self._serial += 1
        return RecordedHandle(serial=self._serial, settings=settings)

    def set_file_output(self, raw, path):
        self.calls.append(("set_file_output", path))
        return self.fail.get("set_file_output", EngineStatus.OK)

    def add_frame_rgba(self, raw, index, width, height, frame, timestamp):
        self.calls.append(("add_frame_rgba", index, width, height, frame.shape, timestamp))
        return self.fail.get("add_frame_rgba", EngineStatus.OK)

    def finish(self, raw):
        self.calls.append(("finish",))
        self.finished.append(raw)
        return self.fail.get("finish", EngineStatus.OK)

    def release(self, raw):
        self.calls.append(("release",))
        self.released.append(raw)
        return self.fail.get("release", EngineStatus.OK)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def frame_indices(self) -> list[int]:
        return [call[1] for call in self.calls if call[0] == "add_frame_rgba"]


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture(autouse=True)
def _clear_engine_env(monkeypatch):
    """Keep the caller's environment from steering engine selection."""
    monkeypatch.delenv("GIFSESSION_ENGINE", raising=False)
    monkeypatch.delenv("GIFSESSION_LIBGIFSKI", raising=False)


@pytest.fixture
def rgba_10x10() -> bytes:
    """A 10x10 opaque red frame (400 bytes)."""
    return bytes((255, 0, 0, 255)) * 100
