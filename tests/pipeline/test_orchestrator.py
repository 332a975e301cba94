"""End-to-end tests for the pipeline orchestrator with fake backends."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest

from sitegen.events import MemoryEventSink, PipelineDegraded, StageCompleted
from sitegen.exceptions import (
    CircuitOpenError,
    PublishError,
    TerminalPipelineError,
)
from sitegen.models import FallbackLevel, GenerationRequest, GenerationResult
from sitegen.pipeline.code_generator import CodeGenerator
from sitegen.pipeline.image_generator import ImageGenerator
from sitegen.pipeline.orchestrator import PREVIEW_URL_PREFIX, PipelineOrchestrator
from sitegen.pipeline.publisher import WebsitePublisher
from sitegen.pipeline.spec_generator import SpecGenerator
from sitegen.resilience.breaker import CircuitBreakerRegistry
from sitegen.storage import JsonFileRegistry, LocalObjectStore

PNG = base64.b64encode(b"\x89PNG\r\n\x1a\nfake").decode("ascii")

SPEC_JSON = json.dumps(
    {
        "meta": {"title": "Green Basket", "description": "Fresh", "keywords": [], "theme_color": "#4CAF50"},
        "navigation": [{"label": "Home", "sectionId": "hero"}],
        "sections": [
            {"id": "hero", "type": "hero", "title": "Fresh", "content": {}, "imagePrompt": "veg stall"},
            {"id": "contact", "type": "contact", "title": "Visit", "content": {}},
        ],
    }
)
CODE_HTML = (
    "```html\n<!DOCTYPE html><html><head><title>Green Basket</title></head><body>"
    '<section data-section-id="hero"><img src="{{IMAGE_URL_hero}}"></section>'
    '<section data-section-id="contact"></section></body></html>\n```'
)

TEXT_LEVELS = [
    FallbackLevel("claude", "anthropic.claude-3-haiku", 0.002, 5.0),
    FallbackLevel("rule-based-template", "internal-templates", 0.0, 5.0),
]
IMAGE_LEVELS = [
    FallbackLevel("titan-image", "amazon.titan-image-generator-v1", 0.01, 5.0),
    FallbackLevel("placeholder-image", "internal-placeholders", 0.0, 5.0),
]
REQUEST = GenerationRequest("Green Basket", "grocery", location="Pune")


class FakeBackend:
    """Answers SPEC and CODE prompts from a script and returns a fixed PNG."""

    def __init__(self, spec: str = SPEC_JSON, code: str = CODE_HTML) -> None:
        self.answers = {"spec": spec, "code": code}
        self.calls: list[str] = []

    async def generate_text(self, level, prompt, options=None):
        kind = "spec" if "architect" in (options.system or "") else "code"
        self.calls.append(kind)
        return GenerationResult(content=self.answers[kind])

    async def generate_image(self, prompt, options=None, *, level=None):
        self.calls.append("image")
        return GenerationResult(content=PNG)


class ExplodingStage:
    """Stage whose online path raises ``error`` and whose offline path delegates."""

    def __init__(self, real, error, offline_error=None) -> None:
        self.real = real
        self.chain = real.chain
        self.error = error
        self.offline_error = offline_error

    async def generate(self, *args):
        raise self.error

    def offline(self, *args):
        if self.offline_error is not None:
            raise self.offline_error
        return self.real.offline(*args)


async def no_sleep(delay):
    return None


def make_orchestrator(tmp_path: Path, backend=None, publisher=None, events=None, **kwargs):
    backend = backend or FakeBackend()
    shared = {"breakers": CircuitBreakerRegistry(), "events": events, "sleep": no_sleep}
    store = LocalObjectStore(tmp_path / "storage", "https://cdn.test")
    stages = {
        "spec_stage": SpecGenerator(backend, TEXT_LEVELS, **shared),
        "code_stage": CodeGenerator(backend, TEXT_LEVELS, **shared),
        "image_stage": ImageGenerator(backend, IMAGE_LEVELS, store, bucket="assets", **shared),
    }
    overrides = {k: kwargs.pop(k) for k in list(kwargs) if k in stages}
    stages.update({k: v(stages[k]) for k, v in overrides.items()})
    orchestrator = PipelineOrchestrator(
        stages["spec_stage"],
        stages["code_stage"],
        stages["image_stage"],
        publisher,
        events=events,
        **kwargs,
    )
    return orchestrator, backend, store


@pytest.mark.asyncio
async def test_online_run_returns_preview_of_assembled_page(tmp_path: Path):
    sink = MemoryEventSink()
    orchestrator, backend, _ = make_orchestrator(tmp_path, events=sink)

    asset = await orchestrator.generate_website(REQUEST, "t1", "s1")

    assert backend.calls == ["spec", "code", "image"]
    assert asset.html.startswith("<!DOCTYPE html>")
    assert "{{IMAGE_URL_" not in asset.html
    assert asset.images == {"hero": "https://cdn.test/assets/stores/s1/images/hero.png"}
    assert asset.images["hero"] in asset.html
    assert asset.website_url.startswith(PREVIEW_URL_PREFIX)
    decoded = base64.b64decode(asset.website_url[len(PREVIEW_URL_PREFIX):]).decode("utf-8")
    assert decoded == asset.html

    meta = asset.metadata
    assert meta["mode"] == "online"
    assert list(meta["stages"]) == ["spec", "code", "images", "assemble", "publish"]
    assert meta["stages"]["spec"]["levelUsed"] == 1
    assert meta["stages"]["spec"]["backendUsed"] == "claude"
    assert meta["total_cost"] == pytest.approx(0.002 + 0.002 + 0.01)
    assert meta["sections_generated"] == 2
    assert meta["images_generated"] == 1
    assert meta["placeholders_replaced"] == 1
    assert "degraded_reason" not in meta
    assert [e.stage for e in sink.of_type(StageCompleted)] == list(meta["stages"])


@pytest.mark.asyncio
async def test_bad_model_output_uses_template_level_without_degrading(tmp_path: Path):
    orchestrator, _, _ = make_orchestrator(
        tmp_path, backend=FakeBackend(spec="Sorry, I cannot help with that.")
    )
    asset = await orchestrator.generate_website(REQUEST, "t1", "s1")
    meta = asset.metadata
    assert meta["mode"] == "online"
    assert meta["stages"]["spec"]["levelUsed"] == 2
    assert meta["stages"]["spec"]["backendUsed"] == "rule-based-template"
    assert {s.id for s in asset.config.sections} >= {"hero", "about", "contact"}


@pytest.mark.asyncio
async def test_escaping_stage_error_degrades_whole_run_to_offline(tmp_path: Path):
    sink = MemoryEventSink()
    orchestrator, backend, _ = make_orchestrator(
        tmp_path,
        events=sink,
        code_stage=lambda real: ExplodingStage(real, CircuitOpenError("claude")),
    )

    asset = await orchestrator.generate_website(REQUEST, "t1", "s1")

    meta = asset.metadata
    assert meta["mode"] == "offline"
    assert meta["degraded_stage"] == "code"
    assert "CIRCUIT_OPEN" in meta["degraded_reason"]
    assert meta["stages"]["spec"]["levelUsed"] == len(TEXT_LEVELS)
    assert meta["stages"]["images"]["backendUsed"] == "placeholder-image"
    assert meta["total_cost"] == 0
    assert "{{IMAGE_URL_" not in asset.html
    assert asset.html.rstrip().endswith("</html>")
    degraded = sink.of_type(PipelineDegraded)
    assert len(degraded) == 1 and degraded[0].stage == "code"
    # SPEC ran online before CODE failed; nothing ran after the failure.
    assert backend.calls == ["spec"]


@pytest.mark.asyncio
async def test_malformed_image_token_degrades_at_assemble(tmp_path: Path):
    malformed = CODE_HTML.replace("{{IMAGE_URL_hero}}", "{{IMAGE_URL_hero\n}}")
    sink = MemoryEventSink()
    orchestrator, backend, _ = make_orchestrator(
        tmp_path, backend=FakeBackend(code=malformed), events=sink
    )

    asset = await orchestrator.generate_website(REQUEST, "t1", "s1")

    assert backend.calls == ["spec", "code", "image"]
    assert asset.metadata["mode"] == "offline"
    assert asset.metadata["degraded_stage"] == "assemble"
    assert "{{IMAGE_URL_" not in asset.html
    assert [e.stage for e in sink.of_type(PipelineDegraded)] == ["assemble"]


@pytest.mark.asyncio
async def test_offline_mode_makes_no_backend_calls(tmp_path: Path):
    orchestrator, backend, _ = make_orchestrator(tmp_path, offline=True)

    asset = await orchestrator.generate_website(REQUEST, "t1", "s1")

    assert backend.calls == []
    assert asset.metadata["mode"] == "offline"
    assert asset.metadata["degraded_reason"] == "offline mode"
    assert set(asset.images) == {"hero", "about"}
    assert asset.metadata["placeholders_replaced"] == 2
    assert "https://placehold.co/1200x600?text=hero" in asset.html


@pytest.mark.asyncio
async def test_terminal_failure_in_offline_path_propagates(tmp_path: Path):
    orchestrator, _, _ = make_orchestrator(
        tmp_path,
        spec_stage=lambda real: ExplodingStage(
            real, CircuitOpenError("claude"), offline_error=KeyError("template")
        ),
    )
    with pytest.raises(TerminalPipelineError) as excinfo:
        await orchestrator.generate_website(REQUEST, "t1", "s1")
    assert isinstance(excinfo.value.__cause__, KeyError)


@pytest.mark.asyncio
async def test_terminal_error_from_online_chain_is_not_absorbed(tmp_path: Path):
    sink = MemoryEventSink()
    orchestrator, _, _ = make_orchestrator(
        tmp_path,
        events=sink,
        spec_stage=lambda real: ExplodingStage(real, TerminalPipelineError("template broke")),
    )
    with pytest.raises(TerminalPipelineError):
        await orchestrator.generate_website(REQUEST, "t1", "s1")
    assert sink.of_type(PipelineDegraded) == []


@pytest.mark.asyncio
async def test_publisher_url_is_returned(tmp_path: Path):
    store = LocalObjectStore(tmp_path / "site", "https://cdn.test")
    publisher = WebsitePublisher(
        store, JsonFileRegistry(tmp_path / "registry.json"), bucket="sites", sleep=no_sleep
    )
    orchestrator, _, _ = make_orchestrator(tmp_path, publisher=publisher)

    asset = await orchestrator.generate_website(REQUEST, "t1", "s1")

    assert asset.website_url == "https://cdn.test/sites/merchants/t1/s1/website/index.html"
    assert asset.to_dict()["websiteUrl"] == asset.website_url
    assert asset.metadata["stages"]["publish"]["backendUsed"] == "publisher"


@pytest.mark.asyncio
async def test_publish_errors_reach_the_caller(tmp_path: Path):
    class BrokenRegistry:
        async def update(self, key, fields):
            raise RuntimeError("registry offline")

    publisher = WebsitePublisher(
        LocalObjectStore(tmp_path / "site"), BrokenRegistry(), bucket="sites", sleep=no_sleep
    )
    orchestrator, _, _ = make_orchestrator(tmp_path, publisher=publisher)

    with pytest.raises(PublishError):
        await orchestrator.generate_website(REQUEST, "t1", "s1")


@pytest.mark.asyncio
async def test_metadata_reports_regions(tmp_path: Path):
    orchestrator, _, _ = make_orchestrator(
        tmp_path, offline=True, region="ap-south-1", storage_region="eu-west-1"
    )
    asset = await orchestrator.generate_website(REQUEST, "tenant", "store")
    assert asset.metadata["region"] == "ap-south-1"
    assert asset.metadata["storage_region"] == "eu-west-1"
    assert asset.metadata["tenant_id"] == "tenant"
