"""Frame decoding: compressed images and camera frames to Frame Tensors.

Two entry points share the same output format (HxWx3 uint8):

- ``decode_image`` for compressed bytes from the photo library. The image is
  decoded to RGBA and the alpha channel dropped byte-for-byte, no resampling.
- ``prepare_camera_frame`` for frames the camera source already resized.
  Only validation, uint8 coercion and the optional horizontal flip happen
  here.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Any

import numpy as np
from PIL import Image, UnidentifiedImageError

from camclassify.errors import DecodeError
from camclassify.ml.tensor import CHANNELS, FrameTensor

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from camclassify.config import Settings

logger = logging.getLogger(__name__)

_RGBA_CHANNELS = 4


def strip_alpha(rgba: bytes | bytearray | memoryview, width: int, height: int) -> bytes:
    """Copy the first three of every four bytes of a flat RGBA buffer.

    Raises:
        DecodeError: If the dimensions are not positive or the buffer length
            does not match ``width * height * 4``.
    """
    if width < 1 or height < 1:
        raise DecodeError(f"Invalid dimensions {width}x{height}")
    expected = width * height * _RGBA_CHANNELS
    if len(rgba) != expected:
        raise DecodeError(f"RGBA buffer length {len(rgba)} does not match {width}x{height}x4 = {expected}")

    pixels = np.frombuffer(rgba, dtype=np.uint8).reshape(-1, _RGBA_CHANNELS)
    return pixels[:, :CHANNELS].tobytes()


class FrameDecoder:
    """Turns photo-library images and camera frames into Frame Tensors."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    @classmethod
    def from_settings(cls, settings: Settings) -> FrameDecoder:
        return cls(max_image_pixels=settings.max_image_pixels)

    def decode_image(self, image_bytes: bytes) -> FrameTensor:
        """Decode compressed image bytes into an RGB Frame Tensor.

        Args:
            image_bytes: Raw file bytes (any format Pillow can read).

        Returns:
            Frame Tensor of shape (height, width, 3).

        Raises:
            DecodeError: If the bytes are not a readable image or the image
                exceeds the configured pixel limit.
        """
        if not image_bytes:
            raise DecodeError("Empty image data")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                source_format = img.format
                if width * height > self._max_image_pixels:
                    raise DecodeError(
                        f"Image of {width}x{height} pixels exceeds limit of {self._max_image_pixels}"
                    )
                rgba = img.convert("RGBA").tobytes()
        except DecodeError:
            raise
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Could not decode image: {exc}") from exc

        logger.debug("Decoded %s image %dx%d", source_format, width, height)
        rgb = strip_alpha(rgba, width, height)
        array = np.frombuffer(rgb, dtype=np.uint8).reshape(height, width, CHANNELS)
        return FrameTensor(array.copy())

    def prepare_camera_frame(
        self, frame: ArrayLike, *, flip_horizontal: bool, normalized: bool = False
    ) -> FrameTensor:
        """Validate a pre-resized camera frame and apply the orientation flip.

        Four-channel frames have their alpha channel dropped. Float frames are
        read as [0, 255] unless ``normalized`` says the source delivers
        [0, 1]. The returned tensor never aliases ``frame``, so the source may
        reuse its buffer as soon as the frame is released.

        Raises:
            DecodeError: If the frame is not a finite numeric (H, W, 3) or
                (H, W, 4) array.
        """
        try:
            array = np.asarray(frame)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"Camera frame is not an array: {exc}") from exc

        if array.dtype != np.bool_ and not np.issubdtype(array.dtype, np.number):
            raise DecodeError(f"Camera frame has non-numeric dtype {array.dtype}")
        if np.issubdtype(array.dtype, np.complexfloating):
            raise DecodeError("Camera frame has complex dtype")
        if array.ndim != 3 or array.shape[2] not in (CHANNELS, _RGBA_CHANNELS):
            raise DecodeError(f"Camera frame must be (H, W, 3) or (H, W, 4), got shape {array.shape}")
        if array.shape[0] < 1 or array.shape[1] < 1:
            raise DecodeError(f"Camera frame is empty: shape {array.shape}")

        array = array[:, :, :CHANNELS]
        if array.dtype != np.uint8:
            array = self._to_uint8(array, normalized=normalized)
        if flip_horizontal:
            array = array[:, ::-1, :]
        return FrameTensor(np.array(array, dtype=np.uint8, order="C"))

    @staticmethod
    def _to_uint8(array: NDArray[Any], *, normalized: bool) -> NDArray[np.uint8]:
        if np.issubdtype(array.dtype, np.floating) and not np.isfinite(array).all():
            raise DecodeError("Camera frame contains NaN or infinite values")
        try:
            values = array.astype(np.float64)
            if normalized:
                values = values * 255.0
            return np.clip(np.rint(values), 0, 255).astype(np.uint8)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"Camera frame could not be converted to uint8: {exc}") from exc
