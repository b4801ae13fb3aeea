"""
Google Gemini vision client - plain REST over aiohttp.

One call = one POST to :generateContent with the instruction as the first part
and one inline_data part per image, in the order given. Only
candidates[0].content.parts[0].text is read from the reply.

The google-genai SDK is not used here: the request body, generationConfig and
per-status errors are a fixed wire contract, so the POST is built by hand.

Status handling (single attempt, never retried here):
  401 / 403 → InvalidCredentialError
  429       → RateLimitError
  400       → InvalidRequestError
  other     → VisionAPIError(status, reason)
"""
from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

import aiohttp

import config
from vision.base import (
    InvalidCredentialError, InvalidRequestError, RateLimitError, VisionAPIError,
)
from vision.encoder import EncodedImage

logger = logging.getLogger(__name__)


class GeminiVisionClient:

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        endpoint: Optional[str] = None,
        temperature: float = 0.1,
        top_k: int = 32,
        top_p: float = 1.0,
        pair_max_output_tokens: int = 4096,
        multi_max_output_tokens: int = 8192,
        timeout_seconds: float = 60,
    ):
        if not api_key:
            raise InvalidCredentialError("Gemini API key is not configured.")
        self.name     = "google"
        self.model_id = model
        self._api_key = api_key
        self._endpoint_template = endpoint or config.GEMINI_ENDPOINT
        self.temperature = temperature
        self.top_k       = top_k
        self.top_p       = top_p
        self.pair_max_output_tokens  = pair_max_output_tokens
        self.multi_max_output_tokens = multi_max_output_tokens
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @classmethod
    def from_config(cls) -> "GeminiVisionClient":
        return cls(
            api_key                 = config.GEMINI_API_KEY or "",
            model                   = config.GEMINI_MODEL,
            endpoint                = config.GEMINI_ENDPOINT,
            temperature             = config.GEMINI_TEMPERATURE,
            top_k                   = config.GEMINI_TOP_K,
            top_p                   = config.GEMINI_TOP_P,
            pair_max_output_tokens  = config.PAIR_MAX_OUTPUT_TOKENS,
            multi_max_output_tokens = config.MULTI_MAX_OUTPUT_TOKENS,
            timeout_seconds         = config.REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"

    @property
    def url(self) -> str:
        return self._endpoint_template.format(model=self.model_id, api_key=self._api_key)

    def build_payload(
        self,
        prompt: str,
        images: Sequence[EncodedImage],
        max_output_tokens: int,
    ) -> dict:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        *[image.as_part() for image in images],
                    ],
                },
            ],
            "generationConfig": {
                "temperature":     self.temperature,
                "topK":            self.top_k,
                "topP":            self.top_p,
                "maxOutputTokens": max_output_tokens,
            },
        }

    async def generate(
        self,
        prompt: str,
        images: Sequence[EncodedImage],
        max_output_tokens: Optional[int] = None,
    ) -> str:
        """Send prompt + images, return the raw text of the first candidate."""
        payload = self.build_payload(
            prompt, images, max_output_tokens or self.pair_max_output_tokens,
        )
        t0 = time.monotonic()

        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            ) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    _raise_for_status(self.full_name, resp.status, resp.reason or "", body)
                data = await resp.json()

        latency_ms = int((time.monotonic() - t0) * 1000)
        logger.info(
            "[%s] OK - %d image(s) latency=%dms", self.full_name, len(images), latency_ms,
        )
        return _first_text(data, self.full_name)


def _raise_for_status(provider: str, status: int, reason: str, body: str) -> None:
    logger.error("[%s] API error %d: %s", provider, status, body[:300])
    if status in (401, 403):
        raise InvalidCredentialError("Invalid API key. Please check your Gemini API key.")
    if status == 429:
        raise RateLimitError("Rate limit exceeded. Please try again in a moment.")
    if status == 400:
        raise InvalidRequestError("Invalid request. Please check your images and try again.")
    raise VisionAPIError(f"Gemini API error: {status} - {reason}", status=status, reason=reason)


def _first_text(data: dict, provider: str) -> str:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        feedback = data.get("promptFeedback") if isinstance(data, dict) else None
        block = feedback.get("blockReason") if isinstance(feedback, dict) else None
        logger.error("[%s] Reply had no text part (block reason: %s)", provider, block)
        raise VisionAPIError(
            "Gemini returned an empty response. Please try again."
            + (f" (blocked: {block})" if block else "")
        ) from exc
    return text or ""
