"""Image acquisition: user uploads and the simulated live camera feed.

Upload bytes and live frames are decoded with Pillow off the event loop and
re-encoded as JPEG, which is the only format sent to the classifier. Live
captures fetch a placeholder image over HTTP; a real camera can sit behind
the same protocol.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from typing import TYPE_CHECKING, Protocol

import httpx
from PIL import Image, UnidentifiedImageError

from plantsense.analysis.errors import CaptureError, ReadError
from plantsense.analysis.models import CapturedImage

if TYPE_CHECKING:
    from plantsense.config import Settings

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90


class ImageSource(Protocol):
    """Protocol for anything that can produce images for analysis."""

    async def acquire_from_upload(self, data: bytes) -> CapturedImage:
        """Decode user-provided file bytes.

        Raises:
            ReadError: If the bytes are empty, too large, or not a decodable image.
        """
        ...

    async def acquire_from_live_feed(self) -> CapturedImage:
        """Capture one frame from the live feed.

        Raises:
            CaptureError: If the capture fails.
        """
        ...


def to_jpeg(data: bytes) -> bytes:
    """Decode any Pillow-readable image and re-encode it as RGB JPEG.

    Raises:
        ReadError: If the bytes cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            buffer = io.BytesIO()
            image.convert("RGB").save(buffer, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ReadError() from exc
    return buffer.getvalue()


def data_url(jpeg: bytes) -> str:
    return f"data:image/jpeg;base64,{base64.b64encode(jpeg).decode('ascii')}"


class DeviceImageSource:
    """Reads uploads from memory and captures live frames from an HTTP feed."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._max_file_size = settings.max_file_size
        self._feed_url = settings.live_feed_url
        self._client = client or httpx.AsyncClient(
            timeout=settings.request_timeout,
            follow_redirects=True,
        )

    async def acquire_from_upload(self, data: bytes) -> CapturedImage:
        if not data:
            raise ReadError("The selected file is empty.")
        if len(data) > self._max_file_size:
            raise ReadError(f"File too large. Maximum size is {self._max_file_size // 1024 // 1024} MB.")

        jpeg = await asyncio.to_thread(to_jpeg, data)
        logger.debug("Decoded upload (%d bytes -> %d bytes JPEG)", len(data), len(jpeg))
        return CapturedImage(data=jpeg, display_ref=data_url(jpeg))

    async def acquire_from_live_feed(self) -> CapturedImage:
        try:
            response = await self._client.get(self._feed_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Live feed capture failed: %s", exc)
            raise CaptureError() from exc

        if not response.content:
            raise CaptureError()
        try:
            jpeg = await asyncio.to_thread(to_jpeg, response.content)
        except ReadError as exc:
            logger.warning(
                "Live feed returned undecodable %s (%d bytes)",
                response.headers.get("content-type", "content"),
                len(response.content),
            )
            raise CaptureError() from exc
        return CapturedImage(data=jpeg, display_ref=self._feed_url)

    async def aclose(self) -> None:
        await self._client.aclose()
