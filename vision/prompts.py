"""
Prompt templates - the contract between the analyzers and the vision model.

Field names in these JSON skeletons are the ones the analyzers validate, so a
rename here must be mirrored in analyzers/single_pair.py or analyzers/multi_angle.py.
"""
from __future__ import annotations

# ── Single pair, stage 1: identify both products ─────────────────────────────

IDENTIFICATION_PROMPT = """You are an expert product analyst specializing in delivery validation. Analyze these two images in extreme detail. The first image shows the product at packaging time, and the second shows the product at delivery time.

Provide a comprehensive analysis including:
1. Detailed product identification for each image
2. Key features and specifications visible
3. Condition assessment
4. Initial comparison observations

Respond in JSON format:
{
  "packaging_analysis": {
    "product_name": "specific product with brand and model",
    "key_features": ["feature1", "feature2", "feature3"],
    "condition": "detailed condition description",
    "completeness": "assessment of visible items/accessories",
    "quality_indicators": ["indicator1", "indicator2"]
  },
  "delivery_analysis": {
    "product_name": "specific product with brand and model",
    "key_features": ["feature1", "feature2", "feature3"],
    "condition": "detailed condition description",
    "completeness": "assessment of visible items/accessories",
    "quality_indicators": ["indicator1", "indicator2"]
  },
  "initial_comparison": {
    "products_match": true/false,
    "confidence_level": 0-100,
    "obvious_differences": ["difference1", "difference2"],
    "concerns": ["concern1", "concern2"]
  }
}"""


# ── Single pair, stage 2: score a confirmed match ────────────────────────────

SIMILARITY_PROMPT_TEMPLATE = """These images show the same product: "{product_name}".

Conduct a detailed similarity analysis and provide:
1. Precise similarity percentage (0-100) based on condition, completeness, and quality
2. Detailed list of specific differences found
3. Technical analysis of visual changes
4. Overall assessment summary

Consider all factors:
- Physical condition changes
- Missing or added components
- Color/lighting variations
- Packaging changes
- Quality indicators

Respond in JSON format:
{{
  "similarity_percentage": 85,
  "detailed_differences": [
    {{
      "category": "physical_condition",
      "description": "specific difference description",
      "severity": "low/medium/high"
    }}
  ],
  "technical_analysis": {{
    "color_variation": "description of color differences",
    "condition_change": "description of condition changes",
    "completeness_score": 0-100,
    "packaging_integrity": "assessment of packaging changes",
    "quality_assessment": "overall quality comparison"
  }},
  "visual_differences": "detailed description of visual discrepancies",
  "summary": "comprehensive assessment summary",
  "recommendations": ["recommendation1", "recommendation2"]
}}"""


def build_similarity_prompt(product_name: str) -> str:
    return SIMILARITY_PROMPT_TEMPLATE.format(product_name=product_name.replace('"', "'"))


# ── Multi-angle: one request for every view on both sides ────────────────────

MULTI_ANGLE_PROMPT_TEMPLATE = """You are an expert product validation specialist analyzing multiple images of the same product from different angles.

PACKAGING IMAGES (First {packaging_count} images, indices 0 to {packaging_last}): These show the product at packaging/seller time
DELIVERY IMAGES (Next {delivery_count} images, indices 0 to {delivery_last} within the delivery set): These show the product at delivery/customer time

Perform a comprehensive multi-angle analysis:

1. **Product Identification**: Identify the specific product across all images
2. **Angle Analysis**: Analyze each angle/view (front, back, sides, top, bottom, details)
3. **Cross-Reference Validation**: Compare corresponding angles between packaging and delivery
4. **Condition Assessment**: Evaluate condition changes across all angles
5. **Completeness Check**: Verify all components, accessories, packaging integrity
6. **Quality Scoring**: Provide similarity scores for each comparable angle

packaging_image_index counts within the packaging images only and delivery_image_index
counts within the delivery images only. match_quality must be one of: excellent, good, fair, poor.

Respond in JSON format:
{{
  "product_identification": {{
    "product_name": "specific product with brand and model",
    "category": "product category",
    "key_identifiers": ["identifier1", "identifier2"]
  }},
  "packaging_analysis": {{
    "total_images": {packaging_count},
    "angles_covered": ["angle1", "angle2"],
    "condition_summary": "overall condition description",
    "completeness": "completeness assessment"
  }},
  "delivery_analysis": {{
    "total_images": {delivery_count},
    "angles_covered": ["angle1", "angle2"],
    "condition_summary": "overall condition description",
    "completeness": "completeness assessment"
  }},
  "angle_comparisons": [
    {{
      "angle": "front_view",
      "packaging_image_index": 0,
      "delivery_image_index": 0,
      "similarity_percentage": 85,
      "differences": ["difference1", "difference2"],
      "match_quality": "good"
    }}
  ],
  "overall_assessment": {{
    "products_match": true/false,
    "overall_similarity": 0-100,
    "confidence_level": 0-100,
    "comprehensive_differences": ["diff1", "diff2"],
    "missing_angles": ["angle1", "angle2"],
    "quality_concerns": ["concern1", "concern2"]
  }},
  "technical_analysis": {{
    "best_matching_angles": ["angle1", "angle2"],
    "worst_matching_angles": ["angle1", "angle2"],
    "coverage_completeness": 0-100,
    "validation_reliability": "high/medium/low"
  }},
  "recommendations": ["recommendation1", "recommendation2"]
}}"""


def build_multi_angle_prompt(packaging_count: int, delivery_count: int) -> str:
    return MULTI_ANGLE_PROMPT_TEMPLATE.format(
        packaging_count=packaging_count,
        packaging_last=packaging_count - 1,
        delivery_count=delivery_count,
        delivery_last=delivery_count - 1,
    )
