"""Configuration and environment loader for the generation backends.

This module provides :class:`GeneratorConfig`, which loads, validates and
exposes everything the pipeline needs to reach the model runtime and the
publishing targets.

Role in Architecture
--------------------
- Forms the boundary between the process environment (or a project ``.env``
  file) and the pipeline's typed runtime config.
- Single source of truth for model ids, regions, buckets, concurrency and
  timeouts, and for the fallback level tables built from them.
- No client logic: only configuration loading, structuring and validation.

Examples
--------
>>> import os
>>> os.environ["AWS_BEARER_TOKEN_BEDROCK"] = "unit-test"
>>> cfg = GeneratorConfig()
>>> cfg.text_levels()[-1].name
'rule-based-template'
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

import sitegen.config as _project_config
from sitegen.config import (
    DEFAULT_ASSETS_BUCKET,
    DEFAULT_BEDROCK_REGION,
    DEFAULT_MODEL_FALLBACK_1,
    DEFAULT_MODEL_FALLBACK_2,
    DEFAULT_MODEL_FALLBACK_3,
    DEFAULT_MODEL_IMAGE,
    DEFAULT_MODEL_PRIMARY,
    DEFAULT_STORAGE_REGION,
    DEFAULT_WEBSITES_BUCKET,
    IMAGE_FALLBACK_TABLE,
    MAX_CONCURRENT_IMAGES,
    PLACEHOLDER_BACKEND_ID,
    PLACEHOLDER_LEVEL_NAME,
    TARGET_RPM,
    TEMPLATE_BACKEND_ID,
    TEMPLATE_LEVEL_NAME,
    TEMPLATE_LEVEL_TIMEOUT,
    TEXT_FALLBACK_TABLE,
)
from sitegen.exceptions import ConfigurationError
from sitegen.models import FallbackLevel

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _env_number(name: str, default: float, cast: type = int) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}", context={"variable": name}
        ) from None


class GeneratorConfig:
    r"""Validated runtime configuration for generation and publishing.

    Attributes
    ----------
    bearer_token : str | None
        Token sent as ``Authorization: Bearer`` to the model runtime.
    region : str
        Region the models are invoked in.
    endpoint : str
        Base URL of the model runtime.
    models : dict[str, str]
        Model ids keyed ``primary``, ``fallback1``..``fallback3``, ``image``.
    storage_region : str
        Region reported for stored artifacts.
    websites_bucket, assets_bucket : str
        Bucket names used for published pages and generated images.
    cloudfront_domain : str | None
        CDN domain; when set, public URLs use it.
    storage_dir : Path
        Root directory of the local object store.
    registry_file : Path
        JSON file holding the website metadata registry.
    public_base_url : str | None
        Base URL the local object store reports; defaults to ``file://`` URLs.
    offline : bool
        Skip every network call and use the deterministic templates.
    max_concurrent_images : int
        Upper bound on simultaneous image generations.
    target_rpm : int
        Requests per minute allowed towards the image model.
    request_timeout : float
        Socket-level timeout (seconds) for one HTTP request.

    Examples
    --------
    >>> cfg = GeneratorConfig(offline=True)
    >>> cfg.offline
    True
    """

    def __init__(self, *, offline: bool | None = None) -> None:
        r"""Load configuration from the environment and an optional ``.env``.

        Parameters
        ----------
        offline : bool | None, optional
            Overrides ``SITEGEN_OFFLINE`` when given.

        Raises
        ------
        ConfigurationError
            If no bearer token is configured while not offline, or a numeric
            variable cannot be parsed.
        """
        env_path = Path(_project_config.PROJECT_ROOT) / ".env"
        if env_path.exists():
            load_dotenv(env_path, override=True)

        self.bearer_token: str | None = os.getenv("AWS_BEARER_TOKEN_BEDROCK") or None
        self.region: str = os.getenv("AWS_BEDROCK_REGION", DEFAULT_BEDROCK_REGION)
        self.endpoint: str = os.getenv(
            "AWS_BEDROCK_ENDPOINT",
            f"https://bedrock-runtime.{self.region}.amazonaws.com",
        ).rstrip("/")
        self.models: dict[str, str] = {
            "primary": os.getenv("AWS_BEDROCK_MODEL_PRIMARY", DEFAULT_MODEL_PRIMARY),
            "fallback1": os.getenv("AWS_BEDROCK_MODEL_FALLBACK_1", DEFAULT_MODEL_FALLBACK_1),
            "fallback2": os.getenv("AWS_BEDROCK_MODEL_FALLBACK_2", DEFAULT_MODEL_FALLBACK_2),
            "fallback3": os.getenv("AWS_BEDROCK_MODEL_FALLBACK_3", DEFAULT_MODEL_FALLBACK_3),
            "image": os.getenv("AWS_BEDROCK_MODEL_IMAGE", DEFAULT_MODEL_IMAGE),
        }
        self.storage_region: str = os.getenv("AWS_S3_REGION", DEFAULT_STORAGE_REGION)
        self.websites_bucket: str = os.getenv("AWS_S3_BUCKET", DEFAULT_WEBSITES_BUCKET)
        self.assets_bucket: str = os.getenv("AWS_S3_BUCKET_ASSETS", DEFAULT_ASSETS_BUCKET)
        self.cloudfront_domain: str | None = os.getenv("CLOUDFRONT_DOMAIN") or None
        self.storage_dir: Path = Path(
            os.getenv("SITEGEN_STORAGE_DIR", str(_project_config.DEFAULT_STORAGE_DIR))
        )
        self.registry_file: Path = Path(
            os.getenv("SITEGEN_REGISTRY_FILE", str(_project_config.DEFAULT_REGISTRY_FILE))
        )
        self.public_base_url: str | None = os.getenv("SITEGEN_PUBLIC_BASE_URL") or None
        self.offline: bool = (
            _env_flag("SITEGEN_OFFLINE") if offline is None else bool(offline)
        )
        self.max_concurrent_images = int(
            _env_number("MAX_CONCURRENT_IMAGES", MAX_CONCURRENT_IMAGES)
        )
        self.target_rpm = int(_env_number("TARGET_RPM", TARGET_RPM))
        self.request_timeout = float(_env_number("REQUEST_TIMEOUT", 300, float))

        if self.max_concurrent_images < 1:
            raise ConfigurationError("MAX_CONCURRENT_IMAGES must be >= 1")
        if self.target_rpm < 1:
            raise ConfigurationError("TARGET_RPM must be >= 1")
        if not self.offline and not self.bearer_token:
            raise ConfigurationError(
                "Missing AWS_BEARER_TOKEN_BEDROCK; set it or run with SITEGEN_OFFLINE=1"
            )

    def text_levels(self) -> list[FallbackLevel]:
        """Return the text fallback levels, ending with the template level."""
        levels = [
            FallbackLevel(
                name=name,
                backend_id=self.models[key],
                cost=cost,
                timeout=timeout,
                quality_tier=quality,
            )
            for name, key, cost, timeout, quality in TEXT_FALLBACK_TABLE
        ]
        levels.append(
            FallbackLevel(
                name=TEMPLATE_LEVEL_NAME,
                backend_id=TEMPLATE_BACKEND_ID,
                cost=0.0,
                timeout=TEMPLATE_LEVEL_TIMEOUT,
                quality_tier="guaranteed",
            )
        )
        return levels

    def image_levels(self) -> list[FallbackLevel]:
        """Return the image fallback levels, ending with the placeholder level."""
        levels = [
            FallbackLevel(
                name=name,
                backend_id=self.models[key],
                cost=cost,
                timeout=timeout,
                quality_tier=quality,
            )
            for name, key, cost, timeout, quality in IMAGE_FALLBACK_TABLE
        ]
        levels.append(
            FallbackLevel(
                name=PLACEHOLDER_LEVEL_NAME,
                backend_id=PLACEHOLDER_BACKEND_ID,
                cost=0.0,
                timeout=TEMPLATE_LEVEL_TIMEOUT,
                quality_tier="guaranteed",
            )
        )
        return levels
