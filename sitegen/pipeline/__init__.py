"""Website generation stages and the orchestrator that sequences them.

Each stage owns one fallback chain and exposes the same two entry points:
``generate`` for the online path and ``offline`` for the deterministic local
path. The orchestrator runs SPEC, CODE and IMAGES in order, assembles the
page and publishes it.

Modules exported
----------------
SpecGenerator
    Business description to validated ``SiteSpec``.
CodeGenerator
    ``SiteSpec`` to a standalone HTML document.
ImageGenerator
    Concurrent per-section image generation with placeholder fallback.
AssetAssembler
    Replaces ``{{IMAGE_URL_<id>}}`` tokens with image URLs.
WebsitePublisher
    Uploads the site and marks it published in the registry.
PipelineOrchestrator
    End-to-end run with degradation to the offline path.
render_site, write_html_output
    Local HTML rendering helpers.
"""

from __future__ import annotations

from .assembler import AssetAssembler, default_placeholder_url, find_placeholders
from .code_generator import CodeGenerator, clean_generated_html
from .image_generator import ImageGenerator, ImageStageResult
from .orchestrator import PipelineOrchestrator, preview_url
from .publisher import WebsitePublisher
from .renderer import render_site, write_html_output
from .spec_generator import SpecGenerator, parse_spec_response

__all__ = [
    "AssetAssembler",
    "CodeGenerator",
    "ImageGenerator",
    "ImageStageResult",
    "PipelineOrchestrator",
    "SpecGenerator",
    "WebsitePublisher",
    "clean_generated_html",
    "default_placeholder_url",
    "find_placeholders",
    "parse_spec_response",
    "preview_url",
    "render_site",
    "write_html_output",
]
