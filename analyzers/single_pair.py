"""
Single-pair analyzer: one packaging image vs one delivery image, two stages.

  identifying ──► products match? ──yes──► similarity scoring ──► done
                                  └─no───► mismatch report    ──► done

Stage 2 is only sent once stage 1 has named the product, because its prompt
is built around that name. If stage 2 comes back unparseable the report is
assembled from stage 1 alone (similarity 75, stage-1 differences) rather than
failing: the operator already has the identification they need.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from report import AnalysisReport, ImageAsset
from vision.base import (
    ResponseParseError, as_bool, as_percentage, as_string_list,
    extract_json_object, lookup, require_fields,
)
from vision.encoder import EncodedImage, encode_images
from vision.gemini_client import GeminiVisionClient
from vision.prompts import IDENTIFICATION_PROMPT, build_similarity_prompt

logger = logging.getLogger(__name__)

FALLBACK_SIMILARITY = 75

_IDENTIFICATION_FIELDS = (
    "packaging_analysis.product_name",
    "delivery_analysis.product_name",
    "initial_comparison.products_match",
    "initial_comparison.confidence_level",
)

_SIMILARITY_FIELDS = (
    "similarity_percentage",
    "detailed_differences",
    "summary",
)


@dataclass
class Identification:
    """Validated stage-1 finding."""
    packaging_product: str
    delivery_product: str
    products_match: bool
    confidence: float
    obvious_differences: list[str]


def parse_identification(raw: str) -> Identification:
    """Stage-1 reply → Identification. Any failure is terminal for the request."""
    try:
        data = extract_json_object(raw, "identification")
        require_fields(data, _IDENTIFICATION_FIELDS, "identification")
        return Identification(
            packaging_product   = str(lookup(data, "packaging_analysis.product_name")),
            delivery_product    = str(lookup(data, "delivery_analysis.product_name")),
            products_match      = as_bool(lookup(data, "initial_comparison.products_match"), "products_match"),
            confidence          = as_percentage(lookup(data, "initial_comparison.confidence_level"), "confidence_level"),
            obvious_differences = as_string_list(lookup(data, "initial_comparison.obvious_differences", [])),
        )
    except ResponseParseError as exc:
        raise ResponseParseError("Failed to parse initial analysis. Please try again.") from exc


def format_difference(entry) -> str:
    """Render one categorised difference as "category: description (severity severity)"."""
    if not isinstance(entry, dict):
        return str(entry)
    category    = entry.get("category") or "general"
    description = entry.get("description") or "unspecified difference"
    severity    = entry.get("severity") or "unknown"
    return f"{category}: {description} ({severity} severity)"


def parse_similarity(raw: str, ident: Identification) -> AnalysisReport:
    """Stage-2 reply → full report. Raises ResponseParseError on any schema problem."""
    data = extract_json_object(raw, "similarity")
    require_fields(data, _SIMILARITY_FIELDS, "similarity")

    details = data["detailed_differences"]
    if not isinstance(details, list):
        raise ResponseParseError("[similarity] detailed_differences is not a list")

    technical = data.get("technical_analysis")
    recommendations = as_string_list(data.get("recommendations"))
    technical = dict(technical) if isinstance(technical, dict) else {}
    if recommendations:
        technical["recommendations"] = recommendations

    visual = data.get("visual_differences")
    return AnalysisReport(
        packaging_product     = ident.packaging_product,
        delivery_product      = ident.delivery_product,
        are_products_same     = True,
        similarity_percentage = as_percentage(data["similarity_percentage"], "similarity_percentage"),
        differences           = [format_difference(d) for d in details],
        summary               = str(data["summary"]),
        visual_differences    = str(visual) if visual is not None else None,
        confidence_score      = ident.confidence,
        technical_analysis    = technical,
    )


def degraded_match_report(ident: Identification) -> AnalysisReport:
    """Report built from stage 1 alone when stage 2 could not be parsed."""
    return AnalysisReport(
        packaging_product     = ident.packaging_product,
        delivery_product      = ident.delivery_product,
        are_products_same     = True,
        similarity_percentage = FALLBACK_SIMILARITY,
        differences           = list(ident.obvious_differences),
        summary               = (
            f"Both images show the same product: {ident.packaging_product}. "
            "Some variations detected in presentation or condition."
        ),
        confidence_score      = ident.confidence,
        technical_analysis    = {},
    )


def mismatch_report(ident: Identification) -> AnalysisReport:
    return AnalysisReport(
        packaging_product = ident.packaging_product,
        delivery_product  = ident.delivery_product,
        are_products_same = False,
        differences       = [
            f"Packaging shows: {ident.packaging_product}",
            f"Delivery shows: {ident.delivery_product}",
            "Products are completely different items",
            *ident.obvious_differences,
        ],
        summary           = (
            f'DELIVERY MISMATCH DETECTED: The packaging image contains "{ident.packaging_product}" '
            f'while the delivery image shows "{ident.delivery_product}". This indicates a serious '
            "delivery error that requires immediate attention and investigation."
        ),
        confidence_score  = ident.confidence,
        technical_analysis = {
            "mismatch_type":     "different_products",
            "packaging_product": ident.packaging_product,
            "delivery_product":  ident.delivery_product,
            "confidence":        ident.confidence,
        },
    )


class SinglePairAnalyzer:
    """Runs the identify → score workflow against a GeminiVisionClient."""

    def __init__(self, client: GeminiVisionClient):
        self._client = client

    async def analyse(self, packaging: ImageAsset, delivery: ImageAsset) -> AnalysisReport:
        images = await encode_images([packaging, delivery])
        return await self.analyse_encoded(images[0], images[1])

    async def analyse_encoded(self, packaging: EncodedImage, delivery: EncodedImage) -> AnalysisReport:
        images = [packaging, delivery]
        budget = self._client.pair_max_output_tokens

        raw = await self._client.generate(IDENTIFICATION_PROMPT, images, budget)
        ident = parse_identification(raw)
        logger.info(
            "Identified packaging=%r delivery=%r match=%s confidence=%.0f",
            ident.packaging_product, ident.delivery_product,
            ident.products_match, ident.confidence,
        )

        if not ident.products_match:
            return mismatch_report(ident)

        raw = await self._client.generate(
            build_similarity_prompt(ident.packaging_product), images, budget,
        )
        try:
            return parse_similarity(raw, ident)
        except ResponseParseError as exc:
            logger.warning("Similarity stage unparseable, using identification only: %s", exc)
            return degraded_match_report(ident)
