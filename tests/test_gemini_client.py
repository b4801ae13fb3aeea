"""
Tests for vision/gemini_client.py.

Covers:
  - request body layout (text part first, one inline_data per image, in order)
  - generation config and per-call token budget
  - status-code error taxonomy (401, 403, 429, 400, 500)
  - success body without a text part
"""
from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import fake_response, fake_session, gemini_body
from vision.base import (
    InvalidCredentialError, InvalidRequestError, RateLimitError, VisionAPIError,
)
from vision.encoder import EncodedImage
from vision.gemini_client import GeminiVisionClient

SESSION = "vision.gemini_client.aiohttp.ClientSession"


@pytest.fixture
def client():
    return GeminiVisionClient(
        api_key="test-key",
        model="gemini-test",
        endpoint="https://example.test/models/{model}:generateContent?key={api_key}",
    )


IMAGES = [EncodedImage("AAAA"), EncodedImage("BBBB")]


class TestConstruction:
    def test_missing_key_rejected(self):
        with pytest.raises(InvalidCredentialError):
            GeminiVisionClient(api_key="")

    def test_url_substitutes_model_and_key(self, client):
        assert client.url == "https://example.test/models/gemini-test:generateContent?key=test-key"

    def test_full_name(self, client):
        assert client.full_name == "google/gemini-test"


class TestBuildPayload:
    def test_parts_order(self, client):
        payload = client.build_payload("describe", IMAGES, 4096)
        parts = payload["contents"][0]["parts"]
        assert parts[0] == {"text": "describe"}
        assert [p["inline_data"]["data"] for p in parts[1:]] == ["AAAA", "BBBB"]
        assert all(p["inline_data"]["mime_type"] == "image/jpeg" for p in parts[1:])

    def test_generation_config(self, client):
        cfg = client.build_payload("x", [], 8192)["generationConfig"]
        assert cfg == {"temperature": 0.1, "topK": 32, "topP": 1.0, "maxOutputTokens": 8192}


@pytest.mark.asyncio
class TestGenerate:
    async def test_returns_first_text_part(self, client):
        session = fake_session(fake_response(json_body=gemini_body('{"ok": true}')))
        with patch(SESSION, return_value=session):
            text = await client.generate("prompt", IMAGES)
        assert text == '{"ok": true}'

    async def test_posts_to_endpoint_with_budget(self, client):
        session = fake_session(fake_response(json_body=gemini_body("hi")))
        with patch(SESSION, return_value=session):
            await client.generate("prompt", IMAGES, max_output_tokens=8192)
        args, kwargs = session.post.call_args
        assert args[0] == client.url
        assert kwargs["json"]["generationConfig"]["maxOutputTokens"] == 8192
        assert len(kwargs["json"]["contents"][0]["parts"]) == 3

    async def test_default_budget_is_pair_budget(self, client):
        session = fake_session(fake_response(json_body=gemini_body("hi")))
        with patch(SESSION, return_value=session):
            await client.generate("prompt", IMAGES)
        _, kwargs = session.post.call_args
        assert kwargs["json"]["generationConfig"]["maxOutputTokens"] == 4096

    @pytest.mark.parametrize("status,exc_type,match", [
        (401, InvalidCredentialError, "Invalid API key"),
        (403, InvalidCredentialError, "Invalid API key"),
        (429, RateLimitError, "Rate limit"),
        (400, InvalidRequestError, "Invalid request"),
    ])
    async def test_status_taxonomy(self, client, status, exc_type, match):
        session = fake_session(fake_response(status=status))
        with patch(SESSION, return_value=session):
            with pytest.raises(exc_type, match=match):
                await client.generate("prompt", IMAGES)
        assert session.post.call_count == 1   # never retried

    async def test_other_status_carries_code_and_reason(self, client):
        session = fake_session(fake_response(status=503, reason="Service Unavailable"))
        with patch(SESSION, return_value=session):
            with pytest.raises(VisionAPIError, match="503 - Service Unavailable") as info:
                await client.generate("prompt", IMAGES)
        assert info.value.status == 503

    async def test_no_candidates_raises(self, client):
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        session = fake_session(fake_response(json_body=body))
        with patch(SESSION, return_value=session):
            with pytest.raises(VisionAPIError, match="SAFETY"):
                await client.generate("prompt", IMAGES)
