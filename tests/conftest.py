"""Shared pytest fixtures for FluxEdit tests."""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator

import httpx
import pytest
from PIL import Image

from fluxedit.core.config import FluxEditConfig
from fluxedit.core.models import ImageFile, ProcessingParams
from fluxedit.core.persistence import SessionStore


def make_image_bytes(width: int, height: int, fmt: str = "JPEG", color=(200, 80, 40)) -> bytes:
    """Encode a solid-colour image with Pillow."""
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = (*color, 255) if mode == "RGBA" else color
    buffer = io.BytesIO()
    Image.new(mode, (width, height), fill).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> FluxEditConfig:
    """Create a test configuration with a temporary state directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        FluxEditConfig instance for testing
    """
    return FluxEditConfig(
        api_endpoint="http://testserver/api/kontext",
        request_timeout=5.0,
        state_dir=temp_dir / "state",
        fal_key="test-fal-key",
        fal_model_url="https://fal.test/fal-ai/flux-pro/kontext",
        _env_file=None,
    )


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    """Factory encoding solid-colour test images."""
    return make_image_bytes


@pytest.fixture
def store(test_config: FluxEditConfig) -> SessionStore:
    """Session store backed by the temporary state file."""
    return SessionStore(test_config.state_file, test_config.state_key)


@pytest.fixture
def jpeg_file() -> ImageFile:
    """A small 1200x1600 JPEG upload."""
    return ImageFile(
        name="photo.jpg",
        content=make_image_bytes(1200, 1600, "JPEG"),
        mime_type="image/jpeg",
        last_modified=1_700_000_000.0,
    )


@pytest.fixture
def png_file() -> ImageFile:
    """A 640x480 PNG upload with an alpha channel."""
    return ImageFile(
        name="drawing.png",
        content=make_image_bytes(640, 480, "PNG"),
        mime_type="image/png",
        last_modified=1_700_000_000.0,
    )


@pytest.fixture
def default_params() -> ProcessingParams:
    return ProcessingParams(strength=0.75, guidance=3.5)


@pytest.fixture
def recorded_requests() -> list[httpx.Request]:
    """Requests seen by a mock transport built with ``mock_transport``."""
    return []


@pytest.fixture
def mock_transport(
    recorded_requests: list[httpx.Request],
) -> Callable[..., httpx.MockTransport]:
    """Factory for an ``httpx.MockTransport`` that records every request.

    Args:
        handler: Callable returning an ``httpx.Response`` (or raising) for
            each request; defaults to a successful edit response.

    Returns:
        Factory building the transport
    """

    def success(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"url": "https://cdn.test/result.jpg"})

    def factory(handler: Callable[[httpx.Request], httpx.Response] = success) -> httpx.MockTransport:
        def record(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(request)
            return handler(request)

        return httpx.MockTransport(record)

    return factory
