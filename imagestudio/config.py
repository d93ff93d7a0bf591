from __future__ import annotations

import logging
import os
import re
from typing import Any

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("image-studio.config")

DEFAULT_MAX_IMAGES_PER_MONTH = 20
DEFAULT_IMAGE_PROVIDER = "huggingface"
DEFAULT_HF_MODEL_ID = "stabilityai/sdxl-turbo"
DEFAULT_HF_API_URL_TEMPLATE = "https://api-inference.huggingface.co/models/{model_id}"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash-image"
DEFAULT_UPSTREAM_TIMEOUT_MS = 105_000
DEFAULT_LOG_LEVEL = "INFO"
IMAGE_PROVIDERS = ("huggingface", "gemini")


def parse_positive_int(value: Any, fallback: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    if parsed <= 0:
        return fallback
    return parsed


def parse_csv_list(raw_value: str) -> list[str]:
    ordered: list[str] = []
    for token in re.split(r"[,\n;]", raw_value):
        item = token.strip()
        if item and item not in ordered:
            ordered.append(item)
    return ordered


def get_log_level() -> str:
    return (os.environ.get("IMAGE_STUDIO_LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL


def get_max_images_per_month() -> int:
    raw = os.environ.get("MAX_IMAGES_PER_MONTH")
    if raw is None:
        return DEFAULT_MAX_IMAGES_PER_MONTH
    parsed = parse_positive_int(raw, DEFAULT_MAX_IMAGES_PER_MONTH)
    if str(parsed) != raw.strip():
        logger.warning("Invalid MAX_IMAGES_PER_MONTH=%r; using %s", raw, parsed)
    return parsed


def get_admin_identities() -> frozenset[str]:
    return frozenset(parse_csv_list(os.environ.get("ADMIN_IPS") or ""))


def get_image_provider() -> str:
    raw = (os.environ.get("IMAGE_PROVIDER") or DEFAULT_IMAGE_PROVIDER).strip().lower()
    if raw in IMAGE_PROVIDERS:
        return raw
    return DEFAULT_IMAGE_PROVIDER


def get_hf_api_key() -> str:
    return (os.environ.get("HF_API_KEY") or "").strip()


def get_hf_model_id() -> str:
    return (os.environ.get("HF_MODEL_ID") or DEFAULT_HF_MODEL_ID).strip() or DEFAULT_HF_MODEL_ID


def get_hf_api_url() -> str:
    configured = (os.environ.get("HF_API_URL") or "").strip()
    if configured:
        return configured
    return DEFAULT_HF_API_URL_TEMPLATE.format(model_id=get_hf_model_id())


def get_gemini_api_key() -> str:
    return (os.environ.get("GEMINI_API_KEY") or "").strip()


def get_gemini_model() -> str:
    return (os.environ.get("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL).strip() or DEFAULT_GEMINI_MODEL


def get_upstream_timeout_ms() -> int:
    return parse_positive_int(os.environ.get("UPSTREAM_TIMEOUT_MS"), DEFAULT_UPSTREAM_TIMEOUT_MS)


def get_model_name() -> str:
    if get_image_provider() == "gemini":
        return get_gemini_model()
    return get_hf_model_id()


def get_cors_allow_origins() -> list[str]:
    origins = parse_csv_list(os.environ.get("CORS_ALLOW_ORIGINS") or "")
    return origins or ["*"]
