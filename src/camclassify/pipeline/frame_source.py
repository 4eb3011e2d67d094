"""Camera frame sources.

A source is attached once with a ``FrameSourceConfig`` and hands back a
handle whose ``frames`` iterator is pulled one frame at a time. Sources are
pull-based: a frame that is produced while the consumer is busy is simply
never handed out, so nothing queues up behind a slow classifier.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image

from camclassify.errors import DecodeError, SourceError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import NDArray

    from camclassify.config import Settings
    from camclassify.ml.preprocessing import FrameDecoder

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".gif", ".webp"})


@dataclass(frozen=True)
class FrameSourceConfig:
    """Target resolution and orientation for attached frames.

    ``flip_horizontal`` reports that the sensor is mirrored. Sources still
    deliver frames unflipped: the loop controller applies the flip, so it
    happens exactly once.
    """

    width: int
    height: int
    depth: int = 3
    flip_horizontal: bool = False
    texture_width: int | None = None
    texture_height: int | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> FrameSourceConfig:
        texture_width, texture_height = settings.texture_dims
        return cls(
            width=settings.resize_width,
            height=settings.resize_height,
            depth=settings.resize_depth,
            flip_horizontal=settings.should_flip,
            texture_width=texture_width,
            texture_height=texture_height,
        )


class FrameSourceHandle(Protocol):
    """An attached camera stream."""

    @property
    def frames(self) -> Iterator[NDArray[np.uint8]]:
        """Lazy, possibly infinite sequence of pre-resized, unflipped frames."""
        ...

    def request_preview_refresh(self) -> None:
        """Ask the preview surface to redraw before the next frame is read."""
        ...

    def release_frame(self) -> None:
        """Signal that the last pulled frame is no longer in use."""
        ...


class FrameSource(Protocol):
    def attach(self, config: FrameSourceConfig) -> FrameSourceHandle:
        """Start streaming with the given configuration."""
        ...


class ReplayHandle:
    """Handle over a cycling sequence of pre-decoded frames."""

    def __init__(self, frames: list[NDArray[np.uint8]], *, loop: bool) -> None:
        self._source = itertools.cycle(frames) if loop else iter(frames)
        self._outstanding = 0
        self.frames_pulled = 0
        self.frames_released = 0
        self.preview_refreshes = 0
        self._frames = self._pull()

    @property
    def frames(self) -> Iterator[NDArray[np.uint8]]:
        return self._frames

    def _pull(self) -> Iterator[NDArray[np.uint8]]:
        for frame in self._source:
            if self._outstanding:
                raise SourceError("Frame pulled before the previous frame was released")
            self._outstanding += 1
            self.frames_pulled += 1
            # Hand out a copy so the cached frame survives consumer mutation.
            yield frame.copy()

    def request_preview_refresh(self) -> None:
        self.preview_refreshes += 1

    def release_frame(self) -> None:
        if self._outstanding:
            self._outstanding -= 1
            self.frames_released += 1


class ReplayFrameSource:
    """Stand-in camera that replays the images in a directory.

    Each image is decoded once at attach time and resized to the configured
    resolution, matching what a camera texture pipeline would deliver.
    """

    def __init__(self, directory: str | Path, decoder: FrameDecoder, *, loop: bool = True) -> None:
        self._directory = Path(directory)
        self._decoder = decoder
        self._loop = loop

    def attach(self, config: FrameSourceConfig) -> ReplayHandle:
        if config.depth != 3:
            raise SourceError(f"Unsupported frame depth {config.depth}")
        if not self._directory.is_dir():
            raise SourceError(f"Frame directory {self._directory} does not exist")

        paths = sorted(p for p in self._directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
        frames: list[NDArray[np.uint8]] = []
        for path in paths:
            try:
                tensor = self._decoder.decode_image(path.read_bytes())
            except DecodeError as exc:
                logger.warning("Skipping unreadable frame %s: %s", path.name, exc)
                continue
            with tensor:
                frames.append(self._resize(tensor.array, config.width, config.height))

        if not frames:
            raise SourceError(f"No readable images in {self._directory}")

        logger.info(
            "Replay source attached: %d frames from %s at %dx%d",
            len(frames),
            self._directory,
            config.width,
            config.height,
        )
        return ReplayHandle(frames, loop=self._loop)

    @staticmethod
    def _resize(image: NDArray[np.uint8], width: int, height: int) -> NDArray[np.uint8]:
        if image.shape[0] == height and image.shape[1] == width:
            return image
        resized = Image.fromarray(image).resize((width, height), Image.Resampling.BILINEAR)
        return np.asarray(resized, dtype=np.uint8)
