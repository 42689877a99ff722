"""
Tests for the encoding engines and the engine registry.

The Pillow engine is exercised directly through the raw handle calls
and its output is read back with Pillow.  The libgifski engine is only
tested when the shared library is installed.
"""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from gifsession import GifSession, Phase
from gifsession.engines import (
    ENGINE_PRIORITY,
    GifskiLibraryEngine,
    PillowEngine,
    _PendingFrame,
    get_engine_by_name,
    merge_duplicate_frames,
    palette_size,
    quantize_frames,
    resolve_delays,
)
from gifsession.exceptions import EngineFailure, EngineUnavailableError, InvalidArgumentError
from gifsession.types import EncoderSettings, EngineStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _solid(color: tuple[int, int, int], width: int = 8, height: int = 6) -> np.ndarray:
    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[...] = (*color, 255)
    return frame


def _encode(tmp_path, frames, timestamps, **settings_kwargs):
    """Drive PillowEngine through a full encode and return the output path."""
    settings = EncoderSettings(width=8, height=6, **settings_kwargs).validate()
    engine = PillowEngine()
    raw = engine.create(settings)
    out = tmp_path / "anim.gif"
    assert engine.set_file_output(raw, bytes(str(out), "utf-8") + b"\0") == EngineStatus.OK
    for i, (frame, ts) in enumerate(zip(frames, timestamps)):
        assert engine.add_frame_rgba(raw, i, 8, 6, frame, ts) == EngineStatus.OK
    assert engine.finish(raw) == EngineStatus.OK
    return out


RED, GREEN, BLUE = (255, 0, 0), (0, 255, 0), (0, 0, 255)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestResolveDelays:
    def test_deltas(self):
        assert resolve_delays([0.0, 0.05, 0.15]) == [50, 100, 100]

    def test_single_frame(self):
        assert resolve_delays([0.0]) == [100]

    def test_minimum_delay(self):
        assert resolve_delays([0.0, 0.001, 0.002]) == [10, 10, 10]

    def test_empty(self):
        assert resolve_delays([]) == []


class TestPaletteSize:
    def test_bounds(self):
        assert palette_size(100) == 256
        assert palette_size(1) == 3
        assert palette_size(50) == 128

    def test_monotonic(self):
        sizes = [palette_size(q) for q in range(1, 101)]
        assert sizes == sorted(sizes)


class TestMergeDuplicateFrames:
    def test_merges_consecutive(self):
        frames = [
            _PendingFrame(_solid(RED), 0.0, 50, [0]),
            _PendingFrame(_solid(RED), 0.05, 50, [1]),
            _PendingFrame(_solid(BLUE), 0.1, 70, [2]),
        ]
        merged = merge_duplicate_frames(frames)
        assert len(merged) == 2
        assert merged[0].delay_ms == 100
        assert merged[0].indices == [0, 1]
        assert merged[1].indices == [2]

    def test_non_consecutive_kept(self):
        frames = [
            _PendingFrame(_solid(RED), 0.0, 50, [0]),
            _PendingFrame(_solid(BLUE), 0.05, 50, [1]),
            _PendingFrame(_solid(RED), 0.1, 50, [2]),
        ]
        assert len(merge_duplicate_frames(frames)) == 3


class TestQuantizeFrames:
    def test_global_palette_mode(self):
        images = [Image.new("RGB", (8, 6), c) for c in (RED, GREEN, BLUE)]
        out = quantize_frames(images, colors=16, fast=False)
        assert all(img.mode == "P" for img in out)
        palettes = {bytes(img.getpalette()) for img in out}
        assert len(palettes) == 1

    def test_fast_mode(self):
        images = [Image.new("RGB", (8, 6), c) for c in (RED, GREEN)]
        out = quantize_frames(images, colors=16, fast=True)
        assert [img.mode for img in out] == ["P", "P"]


# ---------------------------------------------------------------------------
# PillowEngine status codes
# ---------------------------------------------------------------------------

class TestPillowEngineStatus:
    def setup_method(self):
        self.engine = PillowEngine()
        self.raw = self.engine.create(EncoderSettings(8, 6))

    def teardown_method(self):
        self.engine.release(self.raw)

    def test_frame_before_output(self):
        status = self.engine.add_frame_rgba(self.raw, 0, 8, 6, _solid(RED), 0.0)
        assert status == EngineStatus.INVALID_STATE

    def test_output_twice(self, tmp_path):
        path = bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0"
        assert self.engine.set_file_output(self.raw, path) == EngineStatus.OK
        assert self.engine.set_file_output(self.raw, path) == EngineStatus.INVALID_STATE

    def test_missing_directory(self, tmp_path):
        path = bytes(str(tmp_path / "nope" / "a.gif"), "utf-8") + b"\0"
        assert self.engine.set_file_output(self.raw, path) == EngineStatus.NOT_FOUND

    def test_directory_target(self, tmp_path):
        path = bytes(str(tmp_path), "utf-8") + b"\0"
        assert self.engine.set_file_output(self.raw, path) == EngineStatus.INVALID_INPUT

    def test_empty_path(self):
        assert self.engine.set_file_output(self.raw, b"\0") == EngineStatus.NULL_ARG

    def test_duplicate_index(self, tmp_path):
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        assert self.engine.add_frame_rgba(self.raw, 0, 8, 6, _solid(RED), 0.0) == EngineStatus.OK
        assert self.engine.add_frame_rgba(self.raw, 0, 8, 6, _solid(RED), 0.1) == EngineStatus.INVALID_STATE

    def test_geometry_mismatch(self, tmp_path):
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        status = self.engine.add_frame_rgba(self.raw, 0, 4, 3, _solid(RED, 4, 3), 0.0)
        assert status == EngineStatus.INVALID_INPUT

    def test_finish_without_output(self):
        assert self.engine.finish(self.raw) == EngineStatus.INVALID_STATE

    def test_finish_without_frames(self, tmp_path):
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        assert self.engine.finish(self.raw) == EngineStatus.INVALID_INPUT
        assert self.raw.output.closed

    def test_finish_twice(self, tmp_path):
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        self.engine.add_frame_rgba(self.raw, 0, 8, 6, _solid(RED), 0.0)
        assert self.engine.finish(self.raw) == EngineStatus.OK
        assert self.engine.finish(self.raw) == EngineStatus.INVALID_STATE

    def test_frames_are_copied(self, tmp_path):
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        frame = _solid(RED)
        self.engine.add_frame_rgba(self.raw, 0, 8, 6, frame, 0.0)
        frame[...] = 0
        assert self.raw.frames[0].pixels[0, 0, 0] == 255

    def test_quantizer_crash_reported_as_gif_error(self, tmp_path, monkeypatch, caplog):
        def explode(*args, **kwargs):
            raise RuntimeError("quantizer exploded")

        monkeypatch.setattr("gifsession.engines.quantize_frames", explode)
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        self.engine.add_frame_rgba(self.raw, 0, 8, 6, _solid(RED), 0.0)
        assert self.engine.finish(self.raw) == EngineStatus.GIF
        assert self.raw.output.closed
        assert "Unexpected quantizer error" in caplog.text

    def test_save_crash_reported_as_gif_error(self, tmp_path, monkeypatch):
        def explode(*args, **kwargs):
            raise KeyError("encoderinfo")

        monkeypatch.setattr(Image.Image, "save", explode)
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        self.engine.add_frame_rgba(self.raw, 0, 8, 6, _solid(RED), 0.0)
        assert self.engine.finish(self.raw) == EngineStatus.GIF
        assert self.raw.output.closed

    def test_release_closes_output(self, tmp_path):
        self.engine.set_file_output(self.raw, bytes(str(tmp_path / "a.gif"), "utf-8") + b"\0")
        assert self.engine.release(self.raw) == EngineStatus.OK
        assert self.raw.output.closed
        assert self.raw.closed


# ---------------------------------------------------------------------------
# PillowEngine output
# ---------------------------------------------------------------------------

class TestPillowEngineOutput:
    def test_frame_count_and_size(self, tmp_path):
        out = _encode(tmp_path, [_solid(RED), _solid(GREEN), _solid(BLUE)], [0.0, 0.05, 0.1])
        with Image.open(out) as im:
            assert im.format == "GIF"
            assert im.size == (8, 6)
            assert im.n_frames == 3

    def test_durations_follow_timestamps(self, tmp_path):
        out = _encode(tmp_path, [_solid(RED), _solid(GREEN)], [0.0, 0.2])
        with Image.open(out) as im:
            assert im.info["duration"] == 200

    def test_duplicates_merged(self, tmp_path):
        out = _encode(
            tmp_path,
            [_solid(RED), _solid(RED), _solid(BLUE)],
            [0.0, 0.05, 0.1],
        )
        with Image.open(out) as im:
            assert im.n_frames == 2
            assert im.info["duration"] == 100

    def test_no_loop_by_default(self, tmp_path):
        out = _encode(tmp_path, [_solid(RED), _solid(BLUE)], [0.0, 0.1])
        with Image.open(out) as im:
            assert "loop" not in im.info

    @pytest.mark.parametrize("repeat", [0, 3])
    def test_loop_extension(self, tmp_path, repeat):
        out = _encode(tmp_path, [_solid(RED), _solid(BLUE)], [0.0, 0.1], repeat=repeat)
        with Image.open(out) as im:
            assert im.info["loop"] == repeat

    def test_fast_mode_output(self, tmp_path):
        out = _encode(tmp_path, [_solid(RED), _solid(BLUE)], [0.0, 0.1], fast=True, quality=10)
        with Image.open(out) as im:
            assert im.n_frames == 2

    def test_colors_survive(self, tmp_path):
        out = _encode(tmp_path, [_solid(RED), _solid(BLUE)], [0.0, 0.1])
        with Image.open(out) as im:
            assert im.convert("RGB").getpixel((0, 0)) == RED
            im.seek(1)
            assert im.convert("RGB").getpixel((0, 0)) == BLUE

    def test_through_session(self, tmp_path):
        out = tmp_path / "session.gif"
        session = GifSession(8, 6, repeat=0, engine=PillowEngine())
        session.set_output(str(out))
        for i, color in enumerate((RED, GREEN, BLUE)):
            session.add_frame(_solid(color).tobytes(), i * 0.1)
        session.finish()
        with Image.open(out) as im:
            assert im.n_frames == 3
            assert im.info["loop"] == 0

    def test_encoder_crash_through_session(self, tmp_path, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("quantizer exploded")

        monkeypatch.setattr("gifsession.engines.quantize_frames", explode)
        session = GifSession(8, 6, engine=PillowEngine())
        session.set_output(str(tmp_path / "session.gif"))
        session.add_frame(_solid(RED), 0.0)
        with pytest.raises(EngineFailure) as excinfo:
            session.finish()
        assert excinfo.value.status is EngineStatus.GIF
        assert excinfo.value.operation == "finish"
        assert session.phase is Phase.FINALIZED


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_priority_order(self):
        assert [cls.name for cls in ENGINE_PRIORITY] == ["gifski", "pillow"]

    def test_get_pillow(self):
        assert isinstance(get_engine_by_name("pillow"), PillowEngine)

    def test_unknown_name(self):
        with pytest.raises(InvalidArgumentError, match="unknown engine"):
            get_engine_by_name("lzw-by-hand")

    def test_unavailable_engine(self, monkeypatch):
        monkeypatch.setattr(GifskiLibraryEngine, "is_available", staticmethod(lambda: False))
        with pytest.raises(EngineUnavailableError, match="not available"):
            get_engine_by_name("gifski")

    def test_gifski_missing_library(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GIFSESSION_LIBGIFSKI", str(tmp_path / "libgifski.so"))
        assert not GifskiLibraryEngine.is_available()
        with pytest.raises(EngineUnavailableError):
            GifskiLibraryEngine()

    def test_gifski_unloadable_library(self, monkeypatch, tmp_path):
        fake = tmp_path / "libgifski.so"
        fake.write_bytes(b"not a shared object")
        monkeypatch.setenv("GIFSESSION_LIBGIFSKI", str(fake))
        with pytest.raises(EngineUnavailableError, match="Cannot load"):
            GifskiLibraryEngine()


@pytest.mark.skipif(
    not GifskiLibraryEngine.is_available(),
    reason="libgifski not installed",
)
class TestGifskiLibraryEngine:
    def test_round_trip(self, tmp_path):
        out = tmp_path / "native.gif"
        session = GifSession(8, 6, engine=GifskiLibraryEngine())
        session.set_output(out)
        session.add_frame(_solid(RED).tobytes(), 0.0)
        session.add_frame(_solid(BLUE).tobytes(), 0.1)
        session.finish()
        with Image.open(out) as im:
            assert im.format == "GIF"
            assert im.size == (8, 6)
