"""
Local fallback comparator: no vision model, just pixel statistics.

Similarity:
  both images → RGB → resized to SIZE×SIZE → mean absolute per-channel difference
  similarity = max(0, (1 - diff / 255) × 100), rounded

This path never fails on network conditions. If either image cannot be decoded
the score degrades to NEUTRAL_SIMILARITY instead of raising.

Captions are optional and advisory: when a HuggingFaceCaptioner is attached,
word overlap between the two captions feeds the match verdict and confidence,
but never the similarity score.

Usage:
    comparator = LocalComparator(size=100, captioner=None)
    await comparator.initialize()
    report = await comparator.compare(packaging_asset, delivery_asset)
"""
from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
import numpy as np
from PIL import Image, ImageFilter, UnidentifiedImageError

from report import AnalysisReport, ImageAsset
from vision.base import ImageReadError
from vision.encoder import encode_bytes, read_image_bytes

logger = logging.getLogger(__name__)

NEUTRAL_SIMILARITY = 50
MATCH_THRESHOLD = 70            # pixel similarity above this counts as a match

# Feature-difference thresholds (0–255 scale)
BRIGHTNESS_THRESHOLD = 20
CONTRAST_THRESHOLD   = 15
COLOR_THRESHOLD      = 30
EDGE_THRESHOLD       = 0.1      # difference in edge density (0–1 fraction of pixels)
EDGE_PIXEL_LEVEL     = 32       # FIND_EDGES response above this counts as an edge pixel

# Returned when captioning fails; an empty caption contributes no shared words.
CAPTION_FAILED = ""


@dataclass
class ImageStats:
    brightness: float
    contrast: float
    r_mean: float
    g_mean: float
    b_mean: float
    edge_density: float = 0.0

    @property
    def dominant_channel(self) -> str:
        if self.r_mean > self.g_mean and self.r_mean > self.b_mean:
            return "red_dominant"
        if self.g_mean > self.r_mean and self.g_mean > self.b_mean:
            return "green_dominant"
        return "blue_dominant"


def _decode(image_bytes: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageReadError(f"Could not decode image: {exc}") from exc
    return image.convert("RGB")


def pixel_similarity(img1: Image.Image, img2: Image.Image, size: int = 100) -> int:
    """0–100 similarity from mean absolute RGB difference at a fixed resolution."""
    a = np.asarray(img1.resize((size, size)), dtype=np.float64)
    b = np.asarray(img2.resize((size, size)), dtype=np.float64)
    mean_diff = float(np.mean(np.abs(a - b)))
    return int(round(max(0.0, (1 - mean_diff / 255) * 100)))


def edge_density(image: Image.Image) -> float:
    """Fraction of pixels whose FIND_EDGES response exceeds EDGE_PIXEL_LEVEL."""
    edges = np.asarray(image.convert("L").filter(ImageFilter.FIND_EDGES))
    # Pillow copies the 1px border through the kernel unfiltered
    interior = edges[1:-1, 1:-1]
    if interior.size == 0:
        return 0.0
    return float(np.mean(interior > EDGE_PIXEL_LEVEL))


def image_stats(image: Image.Image) -> ImageStats:
    arr = np.asarray(image, dtype=np.float64)
    return ImageStats(
        brightness   = float(np.mean(arr)),
        contrast     = float(np.std(arr)),
        r_mean       = float(np.mean(arr[:, :, 0])),
        g_mean       = float(np.mean(arr[:, :, 1])),
        b_mean       = float(np.mean(arr[:, :, 2])),
        edge_density = edge_density(image),
    )


def shared_words(caption1: str, caption2: str) -> list[str]:
    """Words longer than 3 chars present in both captions, in caption1 order."""
    words2 = set(caption2.lower().split())
    return [w for w in caption1.lower().split() if len(w) > 3 and w in words2]


@dataclass
class PixelComparison:
    similarity: int
    decoded: bool
    packaging_stats: Optional[ImageStats] = None
    delivery_stats: Optional[ImageStats] = None


def compare_pixels(packaging_bytes: bytes, delivery_bytes: bytes, size: int = 100) -> PixelComparison:
    """Synchronous core; callers on the event loop should run it in a thread."""
    try:
        img1 = _decode(packaging_bytes)
        img2 = _decode(delivery_bytes)
    except ImageReadError as exc:
        logger.warning("Pixel comparison falling back to neutral score: %s", exc)
        return PixelComparison(similarity=NEUTRAL_SIMILARITY, decoded=False)
    return PixelComparison(
        similarity      = pixel_similarity(img1, img2, size),
        decoded         = True,
        packaging_stats = image_stats(img1),
        delivery_stats  = image_stats(img2),
    )


def feature_differences(p: ImageStats, d: ImageStats) -> tuple[list[str], dict]:
    brightness_diff = abs(p.brightness - d.brightness)
    contrast_diff   = abs(p.contrast - d.contrast)
    color_diff      = max(abs(p.r_mean - d.r_mean), abs(p.g_mean - d.g_mean), abs(p.b_mean - d.b_mean))
    edge_diff       = abs(p.edge_density - d.edge_density)

    differences = []
    if brightness_diff > BRIGHTNESS_THRESHOLD:
        differences.append(f"Brightness difference: {brightness_diff:.1f}")
    if contrast_diff > CONTRAST_THRESHOLD:
        differences.append(f"Contrast difference: {contrast_diff:.1f}")
    if color_diff > COLOR_THRESHOLD:
        differences.append("Significant color differences detected")
    if edge_diff > EDGE_THRESHOLD:
        differences.append(f"Edge detail difference: {edge_diff:.3f}")

    metrics = {
        "brightness_diff":     round(brightness_diff, 2),
        "contrast_diff":       round(contrast_diff, 2),
        "color_diff":          round(color_diff, 2),
        "edge_diff":           round(edge_diff, 3),
        "packaging_dominant":  p.dominant_channel,
        "delivery_dominant":   d.dominant_channel,
    }
    return differences, metrics


# ── Optional captioning ───────────────────────────────────────────────────────

class HuggingFaceCaptioner:
    """
    BLIP captions via the Hugging Face inference API.

    caption() never raises: transport errors, non-200 replies, undecodable
    bodies and replies without generated_text all return CAPTION_FAILED.
    """

    def __init__(
        self,
        model: str = "Salesforce/blip-image-captioning-large",
        api_token: Optional[str] = None,
        url_template: str = "https://api-inference.huggingface.co/models/{model}",
        timeout_seconds: float = 30,
    ):
        self.model_id = model
        self._url = url_template.format(model=model)
        self._headers = {"Content-Type": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def caption(self, image_bytes: bytes) -> str:
        payload = {"inputs": encode_bytes(image_bytes).as_data_url()}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._url, json=payload, headers=self._headers, timeout=self._timeout,
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise RuntimeError(f"Hugging Face API error {resp.status}: {text[:200]}")
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError) as exc:
            logger.error("[hf/%s] Caption failed: %s", self.model_id, exc)
            return CAPTION_FAILED

        if isinstance(data, list) and data and isinstance(data[0], dict):
            text = str(data[0].get("generated_text") or "").strip()
            if text:
                return text
        logger.warning("[hf/%s] Reply had no generated_text: %.200r", self.model_id, data)
        return CAPTION_FAILED


# ── Comparator ────────────────────────────────────────────────────────────────

class LocalComparator:

    def __init__(self, size: int = 100, captioner: Optional[HuggingFaceCaptioner] = None):
        self.size = size
        self._captioner = captioner
        self._ready = False

    @property
    def method(self) -> str:
        return "pixel_statistics+captions" if self._captioner else "pixel_statistics"

    async def initialize(self) -> None:
        """Warm up the imaging stack once; the caller then holds this instance."""
        if self._ready:
            return
        await asyncio.to_thread(_warm_up, self.size)
        self._ready = True
        logger.info("Local comparator ready (%s, %dpx)", self.method, self.size)

    async def _read_pair(self, packaging: ImageAsset, delivery: ImageAsset) -> Optional[tuple[bytes, bytes]]:
        try:
            packaging_bytes, delivery_bytes = await asyncio.gather(
                asyncio.to_thread(read_image_bytes, packaging),
                asyncio.to_thread(read_image_bytes, delivery),
            )
        except ImageReadError as exc:
            logger.warning("Local comparison could not read images: %s", exc)
            return None
        return packaging_bytes, delivery_bytes

    async def similarity(self, packaging: ImageAsset, delivery: ImageAsset) -> PixelComparison:
        """Pixel similarity only. Unreadable sources degrade to the neutral score."""
        if not self._ready:
            await self.initialize()
        pair = await self._read_pair(packaging, delivery)
        if pair is None:
            return PixelComparison(similarity=NEUTRAL_SIMILARITY, decoded=False)
        return await asyncio.to_thread(compare_pixels, pair[0], pair[1], self.size)

    async def compare(self, packaging: ImageAsset, delivery: ImageAsset) -> AnalysisReport:
        if not self._ready:
            await self.initialize()
        pair = await self._read_pair(packaging, delivery)
        if pair is None:
            pixels = PixelComparison(similarity=NEUTRAL_SIMILARITY, decoded=False)
        else:
            pixels = await asyncio.to_thread(compare_pixels, pair[0], pair[1], self.size)
        similarity = pixels.similarity

        packaging_caption = delivery_caption = ""
        if self._captioner is not None and pixels.decoded:
            packaging_caption, delivery_caption = await asyncio.gather(
                self._captioner.caption(pair[0]),
                self._captioner.caption(pair[1]),
            )

        common = shared_words(packaging_caption, delivery_caption)
        are_same = len(common) > 2 or similarity > MATCH_THRESHOLD
        confidence = min(95.0, max(60.0, len(common) * 15 + similarity * 0.3))

        differences: list[str] = []
        technical: dict = {
            "method":           self.method,
            "pixel_similarity": similarity,
            "compare_size":     self.size,
        }
        if not pixels.decoded:
            differences.append("Images could not be decoded; neutral similarity used")
            technical["decode_failed"] = True
        else:
            feats, metrics = feature_differences(pixels.packaging_stats, pixels.delivery_stats)
            differences.extend(feats)
            technical.update(metrics)
        if similarity < 90:
            differences.append(f"Visual similarity: {similarity}% - some differences detected")

        if self._captioner is not None:
            technical["common_words"] = common
            technical["captions_available"] = bool(packaging_caption and delivery_caption)
            if len(common) < 3:
                differences.append("Product descriptions have limited overlap")

        packaging_label = packaging_caption or "Packaging image"
        delivery_label  = delivery_caption or "Delivery image"
        if are_same:
            summary = (
                f'Both images appear to show similar products. Packaging shows: "{packaging_label}". '
                f'Delivery shows: "{delivery_label}". Similarity score: {similarity}%'
            )
        else:
            summary = (
                f'Images show different products. Packaging: "{packaging_label}". '
                f'Delivery: "{delivery_label}". This may indicate a delivery mismatch.'
            )

        return AnalysisReport(
            packaging_product     = packaging_label,
            delivery_product      = delivery_label,
            are_products_same     = are_same,
            similarity_percentage = similarity,
            differences           = differences,
            summary               = summary,
            visual_differences    = f"Pixel-based similarity: {similarity}%",
            confidence_score      = round(confidence),
            technical_analysis    = technical,
        )


def _warm_up(size: int) -> None:
    blank = Image.new("RGB", (size, size))
    pixel_similarity(blank, blank, size)
