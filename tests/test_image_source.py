"""Tests for image acquisition and the simulated sensor."""

from __future__ import annotations

import base64
import io
import random

import httpx
import pytest
from PIL import Image

from plantsense.analysis.errors import CaptureError, ReadError
from plantsense.analysis.image_source import DeviceImageSource, to_jpeg
from plantsense.analysis.sensors import HUMIDITY_RANGE, LIGHT_RANGE, TEMPERATURE_RANGE, sample_sensors
from plantsense.config import Settings

FEED_URL = "https://feed.test/plant.jpg"


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (8, 6), (20, 160, 40, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def _source(handler: object = None, **overrides: object) -> DeviceImageSource:
    defaults: dict[str, object] = {"live_feed_url": FEED_URL}
    defaults.update(overrides)
    settings = Settings(**defaults)  # type: ignore[arg-type]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None  # type: ignore[arg-type]
    return DeviceImageSource(settings, client=client)


class TestUpload:
    async def test_png_is_reencoded_as_jpeg(self) -> None:
        image = await _source().acquire_from_upload(_png_bytes())

        assert image.data[:2] == b"\xff\xd8"
        prefix = "data:image/jpeg;base64,"
        assert image.display_ref.startswith(prefix)
        assert base64.b64decode(image.display_ref[len(prefix) :]) == image.data
        with Image.open(io.BytesIO(image.data)) as decoded:
            assert decoded.size == (8, 6)

    async def test_garbage_is_read_error(self) -> None:
        with pytest.raises(ReadError, match="Could not read"):
            await _source().acquire_from_upload(b"definitely not an image")

    async def test_empty_is_read_error(self) -> None:
        with pytest.raises(ReadError):
            await _source().acquire_from_upload(b"")

    async def test_oversized_is_read_error(self) -> None:
        with pytest.raises(ReadError, match="too large"):
            await _source(max_file_size=16).acquire_from_upload(_png_bytes())

    def test_to_jpeg_rejects_truncated_image(self) -> None:
        with pytest.raises(ReadError):
            to_jpeg(_png_bytes()[:20])


class TestLiveFeed:
    async def test_capture_fetches_feed_url(self) -> None:
        requested: list[str] = []
        frame = to_jpeg(_png_bytes())

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=frame, headers={"content-type": "image/jpeg"})

        image = await _source(handler).acquire_from_live_feed()

        assert requested == [FEED_URL]
        assert image.data[:2] == b"\xff\xd8"
        assert image.display_ref == FEED_URL

    async def test_png_frame_is_reencoded_as_jpeg(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_png_bytes(), headers={"content-type": "image/png"})

        image = await _source(handler).acquire_from_live_feed()

        assert image.data[:2] == b"\xff\xd8"
        with Image.open(io.BytesIO(image.data)) as decoded:
            assert decoded.format == "JPEG"
            assert decoded.size == (8, 6)

    async def test_undecodable_frame_is_capture_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>rate limited</html>", headers={"content-type": "text/html"})

        with pytest.raises(CaptureError, match="live feed"):
            await _source(handler).acquire_from_live_feed()

    async def test_http_error_is_capture_error(self) -> None:
        with pytest.raises(CaptureError):
            await _source(lambda request: httpx.Response(404)).acquire_from_live_feed()

    async def test_network_error_is_capture_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(CaptureError):
            await _source(handler).acquire_from_live_feed()

    async def test_empty_body_is_capture_error(self) -> None:
        with pytest.raises(CaptureError):
            await _source(lambda request: httpx.Response(200, content=b"")).acquire_from_live_feed()


class TestSensors:
    def test_samples_stay_in_range(self) -> None:
        rng = random.Random(7)
        for _ in range(500):
            sample = sample_sensors(rng)
            assert TEMPERATURE_RANGE[0] <= sample.temperature <= TEMPERATURE_RANGE[1]
            assert HUMIDITY_RANGE[0] <= sample.humidity <= HUMIDITY_RANGE[1]
            assert LIGHT_RANGE[0] <= sample.light <= LIGHT_RANGE[1]
            assert isinstance(sample.humidity, int)
            assert isinstance(sample.light, int)

    def test_seeded_rng_is_deterministic(self) -> None:
        assert sample_sensors(random.Random(1)) == sample_sensors(random.Random(1))
