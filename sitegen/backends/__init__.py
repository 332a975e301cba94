"""Generative backend boundary: configuration, payload adapters and client.

Modules exported
----------------
BedrockRuntimeClient
    aiohttp client invoking models over the runtime's REST interface.
GeneratorConfig
    Environment-driven configuration and fallback level tables.
build_template_spec
    Deterministic, network-free site content for the terminal level.
"""

from __future__ import annotations

from .client import BedrockRuntimeClient
from .config import GeneratorConfig
from .templates import build_template_spec, detect_business_type

__all__ = [
    "BedrockRuntimeClient",
    "GeneratorConfig",
    "build_template_spec",
    "detect_business_type",
]
