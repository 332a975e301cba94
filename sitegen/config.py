"""Global configuration constants for the project.

Defines paths, default model identifiers, fallback level tables and the
retry/circuit-breaker presets used across the pipeline. Environment driven
settings live in :mod:`sitegen.backends.config`.
"""

from __future__ import annotations

from pathlib import Path

# Project directories
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
PACKAGE_DIR: Path = Path(__file__).resolve().parent
LOG_DIR: Path = PROJECT_ROOT / "logs"
TEMPLATES_DIR: Path = PACKAGE_DIR / "templates"
DEFAULT_STORAGE_DIR: Path = PROJECT_ROOT / "output" / "storage"
DEFAULT_REGISTRY_FILE: Path = PROJECT_ROOT / "output" / "registry.json"

# Prompt templates (SYSTEM:/USER: sections)
SPEC_PROMPT_TEMPLATE_PATH: Path = TEMPLATES_DIR / "spec_prompt.txt"
CODE_PROMPT_TEMPLATE_PATH: Path = TEMPLATES_DIR / "code_prompt.txt"

# Model runtime defaults
DEFAULT_BEDROCK_REGION: str = "us-east-1"
DEFAULT_STORAGE_REGION: str = "eu-north-1"
DEFAULT_MODEL_PRIMARY: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
DEFAULT_MODEL_FALLBACK_1: str = "anthropic.claude-3-haiku-20240307-v1:0"
DEFAULT_MODEL_FALLBACK_2: str = "amazon.titan-text-express-v1"
DEFAULT_MODEL_FALLBACK_3: str = "meta.llama3-70b-instruct-v1:0"
DEFAULT_MODEL_IMAGE: str = "amazon.titan-image-generator-v1"
ANTHROPIC_BEDROCK_VERSION: str = "bedrock-2023-05-31"

# Terminal (network-free) backends
TEMPLATE_BACKEND_ID: str = "internal-templates"
TEMPLATE_LEVEL_NAME: str = "rule-based-template"
PLACEHOLDER_BACKEND_ID: str = "internal-placeholders"
PLACEHOLDER_LEVEL_NAME: str = "placeholder-image"
LOCAL_REGION: str = "local"

# Text fallback table: (name, model env key, cost, timeout seconds, quality)
TEXT_FALLBACK_TABLE: list[tuple[str, str, float, float, str]] = [
    ("claude-3.5-sonnet", "primary", 0.003, 120.0, "premium"),
    ("claude-3-haiku", "fallback1", 0.00025, 60.0, "fast"),
    ("amazon-titan-express", "fallback2", 0.0008, 90.0, "balanced"),
    ("meta-llama3-70b", "fallback3", 0.00195, 180.0, "open-source"),
]
TEMPLATE_LEVEL_TIMEOUT: float = 5.0

IMAGE_FALLBACK_TABLE: list[tuple[str, str, float, float, str]] = [
    ("titan-image-generator", "image", 0.01, 60.0, "standard"),
]

# Generation defaults
DEFAULT_MAX_TOKENS: int = 4000
DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_TOP_P: float = 0.9
IMAGE_WIDTH: int = 1280
IMAGE_HEIGHT: int = 768
IMAGE_CFG_SCALE: float = 8.0
IMAGE_NEGATIVE_PROMPT: str = "blurry, low quality, distorted"
IMAGE_PROMPT_SUFFIX: str = ", high quality, photorealistic, 4k"
MAX_CONCURRENT_IMAGES: int = 4
TARGET_RPM: int = 60

# Placeholders
IMAGE_PLACEHOLDER_BASE_URL: str = "https://placehold.co"
DEFAULT_PLACEHOLDER_SIZE: str = "1200x600"
TAILWIND_CDN_HOST: str = "cdn.tailwindcss.com"

# Publishing
WEBSITE_KEY_PREFIX: str = "merchants/{tenant_id}/{store_id}/website"
IMAGE_KEY_FORMAT: str = "stores/{store_id}/images/{section_id}.png"
DEFAULT_WEBSITES_BUCKET: str = "webdpro-ai-storage"
DEFAULT_ASSETS_BUCKET: str = "webdpro-assets"
PUBLISHED_STATUS: str = "PUBLISHED"

# Retry presets (seconds), mirroring the retryable error names each
# dependency reports.
RETRY_PRESETS: dict[str, dict[str, object]] = {
    "bedrock": {
        "max_attempts": 2,
        "initial_delay": 2.0,
        "max_delay": 10.0,
        "backoff_multiplier": 2.0,
        "retryable_error_patterns": (
            "ThrottlingException",
            "ModelTimeoutException",
            "ServiceUnavailable",
        ),
    },
    "s3": {
        "max_attempts": 3,
        "initial_delay": 0.5,
        "max_delay": 5.0,
        "backoff_multiplier": 2.0,
        "retryable_error_patterns": ("RequestTimeout", "ServiceUnavailable", "SlowDown"),
    },
    "registry": {
        "max_attempts": 3,
        "initial_delay": 0.1,
        "max_delay": 5.0,
        "backoff_multiplier": 2.0,
        "retryable_error_patterns": (
            "ProvisionedThroughputExceededException",
            "ThrottlingException",
            "RequestLimitExceeded",
        ),
    },
    "external_api": {
        "max_attempts": 3,
        "initial_delay": 1.0,
        "max_delay": 10.0,
        "backoff_multiplier": 2.0,
        "retryable_error_patterns": (
            "RequestTimeout",
            "ServiceUnavailable",
            "InternalServerError",
            "ECONNRESET",
            "ETIMEDOUT",
        ),
    },
}

# Circuit breaker presets (seconds)
BREAKER_PRESETS: dict[str, dict[str, float]] = {
    "external_api": {
        "failure_threshold": 5,
        "success_threshold": 2,
        "timeout": 60.0,
        "monitoring_period": 120.0,
    },
    "database": {
        "failure_threshold": 10,
        "success_threshold": 3,
        "timeout": 30.0,
        "monitoring_period": 60.0,
    },
    "ai_service": {
        "failure_threshold": 3,
        "success_threshold": 2,
        "timeout": 120.0,
        "monitoring_period": 300.0,
    },
}

# Business-type themes for the template path
BUSINESS_COLORS: dict[str, tuple[str, str]] = {
    "grocery": ("#4CAF50", "#8BC34A"),
    "restaurant": ("#FF5722", "#FF9800"),
    "clinic": ("#0097A7", "#4DD0E1"),
    "fashion": ("#9C27B0", "#E91E63"),
    "electronics": ("#2196F3", "#03A9F4"),
    "general": ("#1976D2", "#42A5F5"),
}
# Colour names accepted for theme colours besides #rgb, #rgba, #rrggbb and #rrggbbaa.
CSS_NAMED_COLORS: frozenset[str] = frozenset(
    {
        "black", "white", "gray", "grey", "silver", "red", "maroon", "orange",
        "yellow", "olive", "lime", "green", "teal", "aqua", "cyan", "blue",
        "navy", "purple", "fuchsia", "magenta", "pink", "brown", "indigo", "gold",
    }
)
BUSINESS_KEYWORDS: dict[str, tuple[str, ...]] = {
    "grocery": ("vegetable", "grocery", "kirana", "fruit", "supermarket"),
    "restaurant": ("restaurant", "food", "cafe", "bakery", "dhaba"),
    "clinic": ("clinic", "doctor", "medical", "dental", "pharmacy"),
    "fashion": ("fashion", "clothing", "boutique", "apparel", "tailor"),
    "electronics": ("electronics", "mobile", "computer", "gadget"),
}

# CLI defaults and logging
LOG_FILENAME: str = "sitegen.log"
LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_TENANT_ID: str = "demo"
DEFAULT_STORE_ID: str = "demo"
