"""
Tests for analyzers/multi_angle.py.

Covers:
  - prompt states each side's count; packaging images sent before delivery
  - per-angle re-mapping and index bounds
  - technical_analysis totals equal caller counts
  - locally generated summary
  - any parse problem aborts the request
"""
from __future__ import annotations

import base64
import json

import pytest

from analyzers.multi_angle import MultiAngleAnalyzer, build_summary, parse_multi_angle
from conftest import ScriptedClient, make_image_bytes
from report import ImageAsset
from vision.base import ResponseParseError
from vision.prompts import build_multi_angle_prompt


def reply(comparisons=None, match=True, overall=87, coverage=80, **extra) -> str:
    if comparisons is None:
        comparisons = [
            {"angle": "front_view", "packaging_image_index": 0, "delivery_image_index": 0,
             "similarity_percentage": 92, "differences": [], "match_quality": "excellent"},
            {"angle": "back_view", "packaging_image_index": 1, "delivery_image_index": 1,
             "similarity_percentage": 78, "differences": ["Dent near hinge"], "match_quality": "good"},
        ]
    body = {
        "product_identification": {"product_name": "Blue Widget Model X", "category": "Gadgets"},
        "packaging_analysis": {"total_images": 3, "angles_covered": ["front", "back", "top"]},
        "delivery_analysis": {"total_images": 2, "angles_covered": ["front", "back"]},
        "angle_comparisons": comparisons,
        "overall_assessment": {
            "products_match": match,
            "overall_similarity": overall,
            "confidence_level": 90,
            "comprehensive_differences": ["Dent near hinge"],
            "missing_angles": ["top_view"],
            "quality_concerns": [],
        },
        "technical_analysis": {
            "best_matching_angles": ["front_view"],
            "worst_matching_angles": ["back_view"],
            "coverage_completeness": coverage,
            "validation_reliability": "high",
        },
        "recommendations": ["Inspect the hinge"],
    }
    body.update(extra)
    return "Analysis complete.\n" + json.dumps(body)


def assets(count: int, shade: int) -> list[ImageAsset]:
    return [ImageAsset(make_image_bytes((shade, i * 40, 100))) for i in range(count)]


@pytest.mark.asyncio
class TestAnalyse:
    async def test_single_request_with_all_images(self):
        client = ScriptedClient(reply())
        packaging, delivery = assets(3, 10), assets(2, 200)
        await MultiAngleAnalyzer(client).analyse(packaging, delivery)

        assert len(client.calls) == 1
        prompt, image_count, budget = client.calls[0]
        assert image_count == 5
        assert budget == 8192
        assert "First 3 images" in prompt
        assert "Next 2 images" in prompt

    async def test_packaging_images_sent_first(self):
        seen = []

        class Recorder(ScriptedClient):
            async def generate(self, prompt, images, max_output_tokens=None):
                seen.extend(base64.b64decode(i.data) for i in images)
                return await super().generate(prompt, images, max_output_tokens)

        packaging, delivery = assets(2, 10), assets(2, 200)
        await MultiAngleAnalyzer(Recorder(reply())).analyse(packaging, delivery)
        assert seen == [a.source for a in packaging + delivery]

    async def test_report_shape_and_totals(self):
        client = ScriptedClient(reply())
        report = await MultiAngleAnalyzer(client).analyse(assets(3, 10), assets(2, 200))

        assert report.are_products_same is True
        assert report.packaging_product == report.delivery_product == "Blue Widget Model X"
        assert report.overall_similarity_percentage == 87
        assert report.confidence_score == 90
        assert report.recommendations == ["Inspect the hinge"]
        for angle in report.angle_analysis:
            assert 0 <= angle.packaging_image_index < 3
            assert 0 <= angle.delivery_image_index < 2
        tech = report.technical_analysis
        assert tech["total_packaging_images"] == 3
        assert tech["total_delivery_images"] == 2
        assert tech["angles_analyzed"] == 2
        assert tech["missing_angles"] == ["top_view"]
        assert tech["validation_reliability"] == "high"

    async def test_fewer_comparisons_than_images_is_fine(self):
        comps = [{"angle": "front", "packaging_image_index": 0, "delivery_image_index": 0,
                  "similarity_percentage": 95, "differences": [], "match_quality": "excellent"}]
        report = await MultiAngleAnalyzer(ScriptedClient(reply(comps))).analyse(assets(5, 10), assets(5, 200))
        assert report.technical_analysis["angles_analyzed"] == 1
        assert report.technical_analysis["total_packaging_images"] == 5

    async def test_more_than_five_per_side_accepted(self):
        report = await MultiAngleAnalyzer(ScriptedClient(reply())).analyse(assets(7, 10), assets(6, 200))
        assert report.technical_analysis["total_packaging_images"] == 7
        assert report.technical_analysis["total_delivery_images"] == 6

    async def test_empty_side_rejected_before_call(self):
        client = ScriptedClient()
        with pytest.raises(ValueError):
            await MultiAngleAnalyzer(client).analyse([], assets(1, 200))
        assert client.calls == []

    async def test_unparseable_reply_aborts(self):
        client = ScriptedClient("The images are too blurry to compare.")
        with pytest.raises(ResponseParseError, match="multi-image analysis"):
            await MultiAngleAnalyzer(client).analyse(assets(2, 10), assets(2, 200))


class TestParseMultiAngle:
    def test_summary_generated_locally(self):
        report = parse_multi_angle(reply(match=False, overall=41, coverage=60), 3, 2)
        assert report.detailed_summary == build_summary("Blue Widget Model X", 3, 2, 41, False, 60)
        assert "Significant discrepancies detected." in report.detailed_summary
        assert "Analyzed 3 packaging images and 2 delivery images." in report.detailed_summary
        assert "Overall similarity: 41%." in report.detailed_summary
        assert "Coverage completeness: 60%." in report.detailed_summary

    def test_index_out_of_range_rejected(self):
        comps = [{"angle": "side", "packaging_image_index": 0, "delivery_image_index": 2,
                  "similarity_percentage": 70, "differences": [], "match_quality": "fair"}]
        with pytest.raises(ResponseParseError):
            parse_multi_angle(reply(comps), 3, 2)

    def test_negative_index_rejected(self):
        comps = [{"angle": "side", "packaging_image_index": -1, "delivery_image_index": 0,
                  "similarity_percentage": 70, "differences": [], "match_quality": "fair"}]
        with pytest.raises(ResponseParseError):
            parse_multi_angle(reply(comps), 3, 2)

    def test_unknown_tier_rejected(self):
        comps = [{"angle": "side", "packaging_image_index": 0, "delivery_image_index": 0,
                  "similarity_percentage": 70, "differences": [], "match_quality": "great"}]
        with pytest.raises(ResponseParseError):
            parse_multi_angle(reply(comps), 1, 1)

    def test_missing_overall_assessment_rejected(self):
        body = json.loads(reply().split("\n", 1)[1])
        del body["overall_assessment"]
        with pytest.raises(ResponseParseError):
            parse_multi_angle(json.dumps(body), 3, 2)

    def test_angle_mapping(self):
        report = parse_multi_angle(reply(), 3, 2)
        back = report.angle_analysis[1]
        assert back.to_dict() == {
            "angle": "back_view",
            "packagingImageIndex": 1,
            "deliveryImageIndex": 1,
            "similarityPercentage": 78,
            "differences": ["Dent near hinge"],
            "matchQuality": "good",
        }


class TestPrompt:
    def test_counts_and_index_ranges(self):
        prompt = build_multi_angle_prompt(4, 1)
        assert "First 4 images, indices 0 to 3" in prompt
        assert "Next 1 images, indices 0 to 0" in prompt
        assert '"total_images": 4' in prompt
