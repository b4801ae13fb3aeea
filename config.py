"""
Central configuration - reads from .env file.

Nothing here is required at import time: with no GEMINI_API_KEY the validator
runs every comparison through the local pixel comparator instead.

The key is read server-side only. It is appended to the endpoint URL when a
request is built and is never logged or returned in a report.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Gemini vision endpoint ────────────────────────────────────────────────────
GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY", "").strip() or None
GEMINI_MODEL: str          = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")

# {model} and {api_key} are substituted per request
GEMINI_ENDPOINT: str = os.getenv(
    "GEMINI_ENDPOINT",
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}",
)

# ── Generation settings ───────────────────────────────────────────────────────
# Low temperature keeps the JSON shape stable between runs.
GEMINI_TEMPERATURE: float = float(os.getenv("GEMINI_TEMPERATURE", "0.1"))
GEMINI_TOP_K: int         = int(os.getenv("GEMINI_TOP_K", "32"))
GEMINI_TOP_P: float       = float(os.getenv("GEMINI_TOP_P", "1"))

# Multi-angle replies carry one comparison per angle, so they get double the budget.
PAIR_MAX_OUTPUT_TOKENS: int  = int(os.getenv("PAIR_MAX_OUTPUT_TOKENS", "4096"))
MULTI_MAX_OUTPUT_TOKENS: int = int(os.getenv("MULTI_MAX_OUTPUT_TOKENS", "8192"))

REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))

# ── Analysis mode ─────────────────────────────────────────────────────────────
#   auto    → remote when GEMINI_API_KEY is set, otherwise local (default)
#   remote  → always call Gemini; fails if no key
#   local   → pixel comparison only, never touches the network for scoring
ANALYSIS_MODE: str = os.getenv("ANALYSIS_MODE", "auto").strip().lower()

# ── Local fallback ────────────────────────────────────────────────────────────
LOCAL_COMPARE_SIZE: int = int(os.getenv("LOCAL_COMPARE_SIZE", "100"))

# Optional captions from the Hugging Face inference API (advisory only:
# the similarity score always comes from pixels).
ENABLE_CAPTIONS: bool     = os.getenv("ENABLE_CAPTIONS", "false").lower() == "true"
HF_API_TOKEN: str | None  = os.getenv("HF_API_TOKEN", "").strip() or None
HF_CAPTION_MODEL: str     = os.getenv("HF_CAPTION_MODEL", "Salesforce/blip-image-captioning-large")
HF_INFERENCE_URL: str     = os.getenv("HF_INFERENCE_URL", "https://api-inference.huggingface.co/models/{model}")

# ── Image gathering (CLI) ─────────────────────────────────────────────────────
MAX_IMAGES_PER_SIDE: int = int(os.getenv("MAX_IMAGES_PER_SIDE", "5"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
