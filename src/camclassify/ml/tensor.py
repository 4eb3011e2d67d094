"""Owned frame tensor with explicit release."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from camclassify.errors import DecodeError

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import NDArray

CHANNELS = 3


class FrameTensor:
    """An HxWx3 uint8 image owned by exactly one consumer.

    The backing array is dropped on ``release()`` so that a long-running
    loop holds at most one frame at a time. Accessing ``array`` after
    release raises ``DecodeError``.
    """

    __slots__ = ("_array", "_shape")

    def __init__(self, array: NDArray[np.uint8]) -> None:
        if array.ndim != 3 or array.shape[2] != CHANNELS:
            raise DecodeError(f"Expected an (H, W, {CHANNELS}) array, got shape {array.shape}")
        if array.dtype != np.uint8:
            raise DecodeError(f"Expected uint8 pixels, got {array.dtype}")
        self._array: NDArray[np.uint8] | None = array
        self._shape: tuple[int, int, int] = (array.shape[0], array.shape[1], array.shape[2])

    @property
    def array(self) -> NDArray[np.uint8]:
        if self._array is None:
            raise DecodeError("Frame tensor used after release")
        return self._array

    @property
    def shape(self) -> tuple[int, int, int]:
        return self._shape

    @property
    def height(self) -> int:
        return self._shape[0]

    @property
    def width(self) -> int:
        return self._shape[1]

    @property
    def released(self) -> bool:
        return self._array is None

    def release(self) -> None:
        """Drop the backing array. Safe to call more than once."""
        self._array = None

    def __enter__(self) -> FrameTensor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"FrameTensor(shape={self._shape}, {state})"
