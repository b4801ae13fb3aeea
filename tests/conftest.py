"""
Shared pytest fixtures.

Images are generated in memory with Pillow so no test touches the network or
ships binary fixtures. The Gemini key is cleared for every test so "auto" mode
never reaches a real endpoint by accident.
"""
from __future__ import annotations

import io
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def no_api_key(monkeypatch):
    import config
    monkeypatch.setattr(config, "GEMINI_API_KEY", None)
    monkeypatch.setattr(config, "ANALYSIS_MODE", "auto")
    monkeypatch.setattr(config, "ENABLE_CAPTIONS", False)


def make_image_bytes(color=(30, 90, 200), size=(64, 48), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def blue_png() -> bytes:
    return make_image_bytes((30, 90, 200))


@pytest.fixture
def white_png() -> bytes:
    return make_image_bytes((255, 255, 255))


@pytest.fixture
def black_png() -> bytes:
    return make_image_bytes((0, 0, 0))


def fake_response(status: int = 200, json_body=None, text: str = "error text", reason: str = "Error"):
    """Build a fake aiohttp response usable as `async with session.post(...) as resp`."""
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.reason = reason
    mock_resp.json = AsyncMock(return_value=json_body)
    mock_resp.text = AsyncMock(return_value=text)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    return mock_resp


def fake_session(*responses):
    """A fake ClientSession whose post() returns the given responses in order."""
    mock_session = MagicMock()
    mock_session.post = MagicMock(side_effect=list(responses))
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class ScriptedClient:
    """Stand-in for GeminiVisionClient that replays canned replies and records calls."""

    pair_max_output_tokens = 4096
    multi_max_output_tokens = 8192

    def __init__(self, *replies: str):
        self._replies = list(replies)
        self.calls: list[tuple[str, int, int]] = []

    async def generate(self, prompt, images, max_output_tokens=None):
        self.calls.append((prompt, len(images), max_output_tokens))
        if not self._replies:
            raise AssertionError("unexpected extra model call")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply
