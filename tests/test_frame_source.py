"""Tests for frame sources and platform collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from camclassify.config import Settings
from camclassify.errors import SourceError
from camclassify.pipeline.frame_source import FrameSourceConfig, ReplayFrameSource
from camclassify.pipeline.services import FileImageFetcher, SettingsPermissionService

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from numpy.typing import NDArray

    from camclassify.ml.preprocessing import FrameDecoder


@pytest.fixture()
def frame_dir(tmp_path: Path, png: Callable[[NDArray[np.uint8]], bytes]) -> Path:
    (tmp_path / "a.png").write_bytes(png(np.full((40, 30, 3), 10, dtype=np.uint8)))
    (tmp_path / "b.png").write_bytes(png(np.full((200, 152, 3), 20, dtype=np.uint8)))
    (tmp_path / "notes.txt").write_text("not a frame")
    return tmp_path


class TestFrameSourceConfig:
    def test_android_defaults(self) -> None:
        config = FrameSourceConfig.from_settings(Settings(platform="android"))
        assert (config.width, config.height, config.depth) == (152, 200, 3)
        assert config.flip_horizontal is True
        assert (config.texture_width, config.texture_height) == (1600, 1200)

    def test_ios_does_not_flip(self) -> None:
        config = FrameSourceConfig.from_settings(Settings(platform="ios"))
        assert config.flip_horizontal is False
        assert (config.texture_width, config.texture_height) == (1080, 1920)

    def test_explicit_flip_overrides_platform(self) -> None:
        config = FrameSourceConfig.from_settings(Settings(platform="ios", flip_horizontal=True))
        assert config.flip_horizontal is True


class TestReplayFrameSource:
    def test_frames_delivered_unflipped_for_mirrored_sensor(
        self, tmp_path: Path, decoder: FrameDecoder, png: Callable[[NDArray[np.uint8]], bytes]
    ) -> None:
        image = np.zeros((2, 3, 3), dtype=np.uint8)
        image[:, 0, :] = 255
        (tmp_path / "edge.png").write_bytes(png(image))
        config = FrameSourceConfig(width=3, height=2, flip_horizontal=True)

        frame = next(ReplayFrameSource(tmp_path, decoder).attach(config).frames)

        np.testing.assert_array_equal(frame, image)

    def test_frames_resized_to_config(self, frame_dir: Path, decoder: FrameDecoder) -> None:
        handle = ReplayFrameSource(frame_dir, decoder).attach(FrameSourceConfig(width=16, height=12))

        first = next(handle.frames)
        handle.release_frame()
        second = next(handle.frames)
        handle.release_frame()

        assert first.shape == (12, 16, 3)
        assert second.shape == (12, 16, 3)
        assert int(first[0, 0, 0]) == 10
        assert int(second[0, 0, 0]) == 20

    def test_cycles_when_looping(self, frame_dir: Path, decoder: FrameDecoder) -> None:
        handle = ReplayFrameSource(frame_dir, decoder).attach(FrameSourceConfig(width=8, height=8))

        values = []
        for _ in range(5):
            values.append(int(next(handle.frames)[0, 0, 0]))
            handle.release_frame()

        assert values == [10, 20, 10, 20, 10]
        assert handle.frames_pulled == handle.frames_released == 5

    def test_ends_when_not_looping(self, frame_dir: Path, decoder: FrameDecoder) -> None:
        handle = ReplayFrameSource(frame_dir, decoder, loop=False).attach(FrameSourceConfig(width=8, height=8))

        pulled = 0
        for _ in handle.frames:
            pulled += 1
            handle.release_frame()

        assert pulled == 2

    def test_pull_without_release_is_rejected(self, frame_dir: Path, decoder: FrameDecoder) -> None:
        handle = ReplayFrameSource(frame_dir, decoder).attach(FrameSourceConfig(width=8, height=8))
        next(handle.frames)
        with pytest.raises(SourceError, match="released"):
            next(handle.frames)

    def test_preview_refresh_counted(self, frame_dir: Path, decoder: FrameDecoder) -> None:
        handle = ReplayFrameSource(frame_dir, decoder).attach(FrameSourceConfig(width=8, height=8))
        handle.request_preview_refresh()
        assert handle.preview_refreshes == 1

    def test_missing_directory(self, tmp_path: Path, decoder: FrameDecoder) -> None:
        with pytest.raises(SourceError, match="does not exist"):
            ReplayFrameSource(tmp_path / "nope", decoder).attach(FrameSourceConfig(width=8, height=8))

    def test_directory_without_images(self, tmp_path: Path, decoder: FrameDecoder) -> None:
        (tmp_path / "broken.jpg").write_bytes(b"not really a jpeg")
        with pytest.raises(SourceError, match="No readable images"):
            ReplayFrameSource(tmp_path, decoder).attach(FrameSourceConfig(width=8, height=8))

    def test_unsupported_depth(self, frame_dir: Path, decoder: FrameDecoder) -> None:
        with pytest.raises(SourceError, match="depth"):
            ReplayFrameSource(frame_dir, decoder).attach(FrameSourceConfig(width=8, height=8, depth=4))


class TestFileImageFetcher:
    async def test_reads_plain_path(self, tmp_path: Path) -> None:
        image = tmp_path / "photo.jpg"
        image.write_bytes(b"abc")
        assert await FileImageFetcher(max_file_size=10).fetch(str(image)) == b"abc"

    async def test_reads_file_uri(self, tmp_path: Path) -> None:
        image = tmp_path / "my photo.jpg"
        image.write_bytes(b"xyz")
        assert await FileImageFetcher(max_file_size=10).fetch(image.as_uri()) == b"xyz"

    async def test_rejects_large_file(self, tmp_path: Path) -> None:
        image = tmp_path / "big.jpg"
        image.write_bytes(b"0123456789abc")
        with pytest.raises(ValueError, match="limit"):
            await FileImageFetcher(max_file_size=10).fetch(str(image))

    async def test_rejects_remote_scheme(self) -> None:
        with pytest.raises(ValueError, match="scheme"):
            await FileImageFetcher(max_file_size=10).fetch("https://example.com/cat.jpg")

    async def test_missing_file_raises_os_error(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            await FileImageFetcher(max_file_size=10).fetch(str(tmp_path / "missing.jpg"))


class TestSettingsPermissionService:
    async def test_granted(self) -> None:
        assert await SettingsPermissionService(Settings(camera_permission=True)).request_camera_permission()

    async def test_denied(self) -> None:
        assert not await SettingsPermissionService(Settings(camera_permission=False)).request_camera_permission()
