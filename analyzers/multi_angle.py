"""
Multi-angle analyzer: several views per side, one request.

All packaging images go first, then all delivery images; the prompt states how
many belong to each side because the model has no other way to tell. There is
no second stage and no partial fallback: any parse problem aborts the request.
"""
from __future__ import annotations

import logging
from typing import Any, Sequence

from report import MATCH_TIERS, AngleComparison, ImageAsset, MultiAngleReport
from vision.base import (
    ResponseParseError, as_bool, as_percentage, as_string_list,
    extract_json_object, lookup, require_fields,
)
from vision.encoder import encode_images
from vision.gemini_client import GeminiVisionClient
from vision.prompts import build_multi_angle_prompt

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = (
    "product_identification.product_name",
    "angle_comparisons",
    "overall_assessment.products_match",
    "overall_assessment.overall_similarity",
    "overall_assessment.confidence_level",
    "technical_analysis.coverage_completeness",
)


def _index(value: Any, upper: int, field_name: str) -> int:
    if isinstance(value, bool):
        raise ResponseParseError(f"{field_name} is not an integer: {value!r}")
    try:
        index = int(value)
    except (TypeError, ValueError) as exc:
        raise ResponseParseError(f"{field_name} is not an integer: {value!r}") from exc
    if index != value and str(index) != str(value).strip():
        raise ResponseParseError(f"{field_name} is not an integer: {value!r}")
    if not 0 <= index < upper:
        raise ResponseParseError(f"{field_name}={index} out of range [0, {upper})")
    return index


def parse_angle_comparison(entry: Any, packaging_count: int, delivery_count: int) -> AngleComparison:
    if not isinstance(entry, dict):
        raise ResponseParseError(f"angle comparison is not an object: {entry!r}")
    quality = str(entry.get("match_quality", "")).strip().lower()
    if quality not in MATCH_TIERS:
        raise ResponseParseError(f"unknown match_quality {entry.get('match_quality')!r}")
    return AngleComparison(
        angle                 = str(entry.get("angle") or "unspecified"),
        packaging_image_index = _index(entry.get("packaging_image_index"), packaging_count, "packaging_image_index"),
        delivery_image_index  = _index(entry.get("delivery_image_index"), delivery_count, "delivery_image_index"),
        similarity_percentage = as_percentage(entry.get("similarity_percentage"), "similarity_percentage"),
        differences           = as_string_list(entry.get("differences")),
        match_quality         = quality,
    )


def build_summary(
    product_name: str,
    packaging_count: int,
    delivery_count: int,
    overall_similarity: float,
    products_match: bool,
    coverage: float,
) -> str:
    """Fixed-phrasing narrative; the model's own prose is never used here."""
    verdict = (
        "Products match across all angles."
        if products_match else "Significant discrepancies detected."
    )
    return (
        f"Multi-angle analysis of {product_name} completed. "
        f"Analyzed {packaging_count} packaging images and {delivery_count} delivery images. "
        f"Overall similarity: {overall_similarity:g}%. "
        f"{verdict} "
        f"Coverage completeness: {coverage:g}%."
    )


def parse_multi_angle(raw: str, packaging_count: int, delivery_count: int) -> MultiAngleReport:
    """Reply → MultiAngleReport, validating every field used downstream."""
    try:
        data = extract_json_object(raw, "multi-angle")
        require_fields(data, _REQUIRED_FIELDS, "multi-angle")

        comparisons = data["angle_comparisons"]
        if not isinstance(comparisons, list):
            raise ResponseParseError("[multi-angle] angle_comparisons is not a list")
        angles = [parse_angle_comparison(c, packaging_count, delivery_count) for c in comparisons]

        product_name   = str(lookup(data, "product_identification.product_name"))
        products_match = as_bool(lookup(data, "overall_assessment.products_match"), "products_match")
        overall        = as_percentage(lookup(data, "overall_assessment.overall_similarity"), "overall_similarity")
        confidence     = as_percentage(lookup(data, "overall_assessment.confidence_level"), "confidence_level")
        coverage       = as_percentage(lookup(data, "technical_analysis.coverage_completeness"), "coverage_completeness")
    except ResponseParseError as exc:
        raise ResponseParseError("Failed to parse multi-image analysis. Please try again.") from exc

    technical = dict(data["technical_analysis"])
    technical["coverage_completeness"] = coverage
    technical.update(
        total_packaging_images = packaging_count,
        total_delivery_images  = delivery_count,
        angles_analyzed        = len(angles),
        missing_angles         = as_string_list(lookup(data, "overall_assessment.missing_angles", [])),
        quality_concerns       = as_string_list(lookup(data, "overall_assessment.quality_concerns", [])),
    )

    return MultiAngleReport(
        packaging_product             = product_name,
        delivery_product              = product_name,
        are_products_same             = products_match,
        overall_similarity_percentage = overall,
        angle_analysis                = angles,
        comprehensive_differences     = as_string_list(
            lookup(data, "overall_assessment.comprehensive_differences", []),
        ),
        detailed_summary              = build_summary(
            product_name, packaging_count, delivery_count, overall, products_match, coverage,
        ),
        confidence_score              = confidence,
        technical_analysis            = technical,
        recommendations               = as_string_list(data.get("recommendations")),
    )


class MultiAngleAnalyzer:

    def __init__(self, client: GeminiVisionClient):
        self._client = client

    async def analyse(
        self,
        packaging: Sequence[ImageAsset],
        delivery: Sequence[ImageAsset],
    ) -> MultiAngleReport:
        if not packaging or not delivery:
            raise ValueError("At least one packaging image and one delivery image are required.")

        images = await encode_images([*packaging, *delivery])
        prompt = build_multi_angle_prompt(len(packaging), len(delivery))

        raw = await self._client.generate(prompt, images, self._client.multi_max_output_tokens)
        report = parse_multi_angle(raw, len(packaging), len(delivery))
        logger.info(
            "Multi-angle %r: %d/%d angle(s) compared, similarity=%.0f match=%s",
            report.packaging_product, len(report.angle_analysis),
            min(len(packaging), len(delivery)),
            report.overall_similarity_percentage, report.are_products_same,
        )
        return report
