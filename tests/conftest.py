"""
Tourkit — Test Configuration (conftest.py)
============================================

What:  Shared pytest fixtures for the entire test suite.
Why:   No test talks to a real storage, geocoder or planner endpoint. Every
       outbound call goes through httpx.MockTransport and every backoff or
       throttle pause goes through a recording fake sleep.

Fixtures:
    ├── fake_sleep: AsyncMock standing in for asyncio.sleep
    ├── noisy_image_bytes / small_jpeg / large_png_asset: Pillow-built images
    ├── make_client: httpx.AsyncClient over a MockTransport handler
    ├── scripted_oracle: PlanningOracle that replays canned replies
    └── test_client: HTTPX AsyncClient for API endpoint testing
"""

import io
import os
import random
from typing import Callable, List, Optional, Union
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Must happen before tourkit.config is imported anywhere
os.environ["PLANNER_API_KEY"] = "test-key-not-real"
os.environ["STORAGE_URL"] = "http://storage.test"
os.environ["LOG_LEVEL"] = "WARNING"

from tourkit.schemas.assets import AssetDescriptor  # noqa: E402
from tourkit.services.planner_base import PlanningOracle  # noqa: E402


def _noisy_image(width: int, height: int, mode: str = "RGB") -> Image.Image:
    """Random pixels so the encoded file does not compress to nothing."""
    data = random.Random(1234).randbytes(width * height * len(mode))
    return Image.frombytes(mode, (width, height), data)


def encode_image(image: Image.Image, fmt: str, **params) -> bytes:
    out = io.BytesIO()
    image.save(out, format=fmt, **params)
    return out.getvalue()


class ScriptedOracle(PlanningOracle):
    """Replays replies in order; an Exception entry is raised instead."""

    def __init__(self, replies: Optional[List[Union[str, Exception]]] = None):
        self.replies = list(replies or [])
        self.calls: List[tuple] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def health_check(self) -> bool:
        return True


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_sleep():
    """Records requested pauses without waiting."""
    return AsyncMock(return_value=None)


@pytest.fixture
def noisy_image_bytes() -> Callable[..., bytes]:
    """
    Encode a random-pixel image.

    Usage:
        data = noisy_image_bytes(400, 200, "JPEG", exif=exif.tobytes())
    """
    def factory(width: int, height: int, fmt: str = "PNG", mode: str = "RGB", **params) -> bytes:
        return encode_image(_noisy_image(width, height, mode), fmt, **params)
    return factory


@pytest.fixture
def small_jpeg() -> AssetDescriptor:
    image = Image.new("RGB", (64, 48), color=(200, 120, 40))
    return AssetDescriptor(name="kitchen.jpg", mime_type="image/jpeg", data=encode_image(image, "JPEG"))


@pytest.fixture(scope="session")
def large_png_bytes() -> bytes:
    # Noise does not compress: 2400x600 RGBA is ~5.8 MB as PNG
    return encode_image(_noisy_image(2400, 600, "RGBA"), "PNG")


@pytest.fixture
def large_png_asset(large_png_bytes) -> AssetDescriptor:
    return AssetDescriptor(name="living-room.png", mime_type="image/png", data=large_png_bytes)


@pytest.fixture
def make_client() -> Callable[[Callable], httpx.AsyncClient]:
    """
    Build an httpx.AsyncClient whose requests go to `handler`.

    Usage:
        client = make_client(lambda request: httpx.Response(200, json=[]))
    """
    def factory(handler, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


@pytest.fixture
def scripted_oracle() -> Callable[..., ScriptedOracle]:
    def factory(*replies) -> ScriptedOracle:
        return ScriptedOracle(list(replies))
    return factory


@pytest_asyncio.fixture
async def test_client():
    """
    HTTPX AsyncClient talking to the FastAPI app in-process.

    Tests install their own components through app.dependency_overrides;
    overrides are cleared afterwards.
    """
    from tourkit.main import app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
