"""
report.py: canonical home of the request and result types.

Every analyzer (remote or local) returns one of the two report shapes below,
so the presentation layer doesn't care which path produced it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

MATCH_TIERS = ("excellent", "good", "fair", "poor")


@dataclass(frozen=True)
class ImageAsset:
    """A caller-owned image: either raw bytes or a path on disk."""
    source: Union[bytes, Path, str]
    media_type: str = "image/jpeg"

    @property
    def label(self) -> str:
        if isinstance(self.source, (bytes, bytearray)):
            return f"<{len(self.source)} bytes>"
        return str(self.source)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageAsset":
        path = Path(path)
        suffix = path.suffix.lower().lstrip(".")
        media_type = f"image/{'jpeg' if suffix in ('jpg', 'jpeg', '') else suffix}"
        return cls(source=path, media_type=media_type)


@dataclass
class AngleComparison:
    """One packaging/delivery image pair compared from the same viewpoint."""
    angle: str
    packaging_image_index: int
    delivery_image_index: int
    similarity_percentage: float
    differences: list[str]
    match_quality: str          # excellent | good | fair | poor

    def to_dict(self) -> dict[str, Any]:
        return {
            "angle":                self.angle,
            "packagingImageIndex":  self.packaging_image_index,
            "deliveryImageIndex":   self.delivery_image_index,
            "similarityPercentage": self.similarity_percentage,
            "differences":          list(self.differences),
            "matchQuality":         self.match_quality,
        }


@dataclass
class AnalysisReport:
    """Result of comparing exactly one packaging image with one delivery image."""
    packaging_product: str
    delivery_product: str
    are_products_same: bool
    differences: list[str]
    summary: str
    confidence_score: float
    technical_analysis: dict[str, Any] = field(default_factory=dict)
    similarity_percentage: Optional[float] = None     # absent on a mismatch
    visual_differences: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "packagingProduct":  self.packaging_product,
            "deliveryProduct":   self.delivery_product,
            "areProductsSame":   self.are_products_same,
            "differences":       list(self.differences),
            "summary":           self.summary,
            "confidenceScore":   self.confidence_score,
            "technicalAnalysis": dict(self.technical_analysis),
        }
        if self.similarity_percentage is not None:
            out["similarityPercentage"] = self.similarity_percentage
        if self.visual_differences is not None:
            out["visualDifferences"] = self.visual_differences
        return out


@dataclass
class MultiAngleReport:
    """Result of comparing several views of the product on each side."""
    packaging_product: str
    delivery_product: str
    are_products_same: bool
    overall_similarity_percentage: float
    angle_analysis: list[AngleComparison]
    comprehensive_differences: list[str]
    detailed_summary: str
    confidence_score: float
    technical_analysis: dict[str, Any] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "packagingProduct":            self.packaging_product,
            "deliveryProduct":             self.delivery_product,
            "areProductsSame":             self.are_products_same,
            "overallSimilarityPercentage": self.overall_similarity_percentage,
            "angleAnalysis":               [a.to_dict() for a in self.angle_analysis],
            "comprehensiveDifferences":    list(self.comprehensive_differences),
            "detailedSummary":             self.detailed_summary,
            "confidenceScore":             self.confidence_score,
            "technicalAnalysis":           dict(self.technical_analysis),
            "recommendations":             list(self.recommendations),
        }


def match_tier(similarity: float) -> str:
    """Bucket a 0–100 similarity score into a qualitative tier."""
    if similarity >= 90:
        return "excellent"
    if similarity >= 75:
        return "good"
    if similarity >= 50:
        return "fair"
    return "poor"
