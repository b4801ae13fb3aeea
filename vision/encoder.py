"""
Image encoder: turns caller-supplied images into base64 text for the JSON body.

Every image is sent as image/jpeg regardless of its real format; the endpoint
sniffs the actual bytes, so the tag only has to be a valid image type.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from report import ImageAsset
from vision.base import ImageReadError

logger = logging.getLogger(__name__)

WIRE_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class EncodedImage:
    data: str                         # base64, no data-URL prefix
    mime_type: str = WIRE_MIME_TYPE

    def as_part(self) -> dict:
        """Render as a Gemini inline_data content part."""
        return {"inline_data": {"mime_type": self.mime_type, "data": self.data}}

    def as_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


def read_image_bytes(asset: ImageAsset) -> bytes:
    """Return the raw bytes behind an asset. Raises ImageReadError on any I/O failure."""
    source = asset.source
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    try:
        return Path(source).read_bytes()
    except OSError as exc:
        raise ImageReadError(f"Could not read image {asset.label}: {exc}") from exc


def encode_bytes(image_bytes: bytes) -> EncodedImage:
    return EncodedImage(data=base64.b64encode(image_bytes).decode("ascii"))


async def encode_image(asset: ImageAsset) -> EncodedImage:
    """Read one asset off the event loop and base64 it."""
    image_bytes = await asyncio.to_thread(read_image_bytes, asset)
    if not image_bytes:
        raise ImageReadError(f"Image {asset.label} is empty")
    return encode_bytes(image_bytes)


async def encode_images(assets: Sequence[ImageAsset]) -> list[EncodedImage]:
    """Encode a batch concurrently; output order matches input order."""
    encoded = await asyncio.gather(*[encode_image(a) for a in assets])
    logger.debug("Encoded %d image(s)", len(encoded))
    return list(encoded)
