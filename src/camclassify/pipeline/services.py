"""Platform collaborators: camera permission, gallery picker, image fetch."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from urllib.parse import unquote, urlparse

if TYPE_CHECKING:
    from camclassify.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PickResult:
    """Outcome of a gallery pick. ``uri`` is set only when not cancelled."""

    cancelled: bool
    uri: str | None = None


class PermissionService(Protocol):
    async def request_camera_permission(self) -> bool:
        """Ask for camera access. Returns True when granted."""
        ...


class GalleryPicker(Protocol):
    async def pick_image(self) -> PickResult:
        """Let the user choose one image."""
        ...


class ImageFetcher(Protocol):
    async def fetch(self, uri: str) -> bytes:
        """Return the binary content behind an image reference."""
        ...


class SettingsPermissionService:
    """Answers the permission prompt from configuration."""

    def __init__(self, settings: Settings) -> None:
        self._granted = settings.camera_permission

    async def request_camera_permission(self) -> bool:
        logger.info("Camera permission %s", "granted" if self._granted else "denied")
        return self._granted


class FileImageFetcher:
    """Reads images from local paths or ``file://`` URIs."""

    def __init__(self, max_file_size: int) -> None:
        self._max_file_size = max_file_size

    async def fetch(self, uri: str) -> bytes:
        """Read the file behind ``uri``.

        Raises:
            ValueError: If the URI scheme is unsupported or the file is too large.
            OSError: If the file cannot be read.
        """
        path = self._resolve(uri)
        size = (await asyncio.to_thread(path.stat)).st_size
        if size > self._max_file_size:
            raise ValueError(f"{path.name} is {size} bytes, limit is {self._max_file_size}")
        return await asyncio.to_thread(path.read_bytes)

    @staticmethod
    def _resolve(uri: str) -> Path:
        parsed = urlparse(uri)
        if parsed.scheme in ("", "file"):
            return Path(unquote(parsed.path) if parsed.scheme else uri)
        raise ValueError(f"Unsupported image URI scheme: {parsed.scheme!r}")
