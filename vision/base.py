"""
Shared error types and reply parsing for the vision layer.

The model is asked for JSON but routinely wraps it in prose or markdown fences
("Here is the analysis: ```json {...} ```"). Everything coming back from the
endpoint is treated as untrusted text until extract_json_object() and
require_fields() have both accepted it.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

_MISSING = object()


# ── Error taxonomy ─────────────────────────────────────────────────────────────

class VisionError(RuntimeError):
    """Base for every failure that should reach the operator as a readable message."""


class InvalidCredentialError(VisionError):
    """401/403 from the endpoint, or remote mode forced without a key."""


class RateLimitError(VisionError):
    """429 from the endpoint. Not retried here."""


class InvalidRequestError(VisionError):
    """400 from the endpoint - usually an unreadable or oversized image."""


class VisionAPIError(VisionError):
    """Any other non-success response, or a success body with no text part."""

    def __init__(self, message: str, status: Optional[int] = None, reason: str = ""):
        super().__init__(message)
        self.status = status
        self.reason = reason


class ResponseParseError(VisionError):
    """The reply held no usable JSON object, or a required field was missing."""


class AnalysisFailedError(VisionError):
    """Generic wrapper raised at the outer boundary for unexpected failures."""


class ImageReadError(OSError):
    """An image source could not be read or decoded."""


# ── Reply parsing ──────────────────────────────────────────────────────────────

def extract_json_object(raw: str, stage: str = "analysis") -> dict:
    """
    Return the JSON object embedded in a free-text model reply.

    The greedy span from the first '{' to the last '}' is tried first. If that
    span is not valid JSON (stray braces in surrounding prose), each '{' is tried
    in turn with an incremental decoder and the first object that decodes wins.
    Raises ResponseParseError when nothing decodes.
    """
    text = raw or ""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        logger.error("[%s] No JSON object in reply: %s", stage, text[:300])
        raise ResponseParseError(f"[{stage}] No JSON found in response")

    try:
        data = json.loads(text[start:end + 1])
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    # Only braces that open at nesting depth 0 are candidates; an object nested
    # inside an unclosed outer brace is never returned on its own.
    decoder = json.JSONDecoder()
    depth = 0
    for pos in range(start, len(text)):
        ch = text[pos]
        if ch == "{":
            if depth == 0:
                try:
                    data, _ = decoder.raw_decode(text, pos)
                    if isinstance(data, dict):
                        return data
                except json.JSONDecodeError:
                    pass
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1

    logger.error("[%s] Unparseable JSON in reply: %s", stage, text[:300])
    raise ResponseParseError(f"[{stage}] JSON parse error")


def lookup(data: dict, path: str, default: Any = _MISSING) -> Any:
    """Walk a dotted path ("overall_assessment.products_match") through nested dicts."""
    node: Any = data
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node or node[part] is None:
            if default is _MISSING:
                raise KeyError(path)
            return default
        node = node[part]
    return node


def require_fields(data: dict, paths: Iterable[str], stage: str = "analysis") -> None:
    """Raise ResponseParseError listing every required dotted path that is absent."""
    missing = []
    for path in paths:
        try:
            lookup(data, path)
        except KeyError:
            missing.append(path)
    if missing:
        logger.error("[%s] Reply missing required fields: %s", stage, ", ".join(missing))
        raise ResponseParseError(f"[{stage}] Missing required fields: {', '.join(missing)}")


def as_percentage(value: Any, field_name: str) -> float:
    """Coerce a model-supplied 0–100 number ("85", 85, "85%") and clamp it."""
    if isinstance(value, bool):
        raise ResponseParseError(f"{field_name} is not a number: {value!r}")
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ResponseParseError(f"{field_name} is not a number: {value!r}") from exc
    return max(0.0, min(100.0, number))


def as_string_list(value: Any) -> list[str]:
    """Model lists occasionally arrive as a single string or null."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return [str(value)]


def as_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ResponseParseError(f"{field_name} is not a boolean: {value!r}")
