"""IMAGES stage: one generated image per section that asks for one.

Sections with an ``image_prompt`` are processed concurrently, one task each,
bounded by an ``asyncio.Semaphore`` and an ``aiolimiter.AsyncLimiter`` on
requests per minute. Every task runs its own pass through the image
fallback chain: generate, decode, store, and return the public URL. When
the online levels fail the terminal level supplies a placeholder URL for
that section only, so one failing image never affects its siblings.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from aiolimiter import AsyncLimiter

from sitegen.config import (
    DEFAULT_ASSETS_BUCKET,
    IMAGE_KEY_FORMAT,
    IMAGE_PROMPT_SUFFIX,
    LOCAL_REGION,
    MAX_CONCURRENT_IMAGES,
    TARGET_RPM,
)
from sitegen.events import EventSink, ImageFallback, NullEventSink
from sitegen.exceptions import ResponseValidationError
from sitegen.models import (
    FallbackLevel,
    GenerationResult,
    ImageMap,
    SiteSection,
    SiteSpec,
    StageReport,
)
from sitegen.pipeline.assembler import default_placeholder_url
from sitegen.resilience.breaker import CircuitBreakerRegistry
from sitegen.resilience.fallback import FallbackChain
from sitegen.resilience.retry import RetryConfig
from sitegen.storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class ImageJob:
    section: SiteSection
    store_id: str


@dataclass
class ImageStageResult:
    images: ImageMap = field(default_factory=dict)
    results: dict[str, GenerationResult[str]] = field(default_factory=dict)

    @property
    def fallbacks(self) -> list[str]:
        return [
            section_id
            for section_id, result in self.results.items()
            if result.metadata is not None and result.metadata.region == LOCAL_REGION
        ]

    def report(self, stage: str = "images") -> StageReport:
        """Summarize the stage: worst level used, summed cost, longest task."""
        metas = [r.metadata for r in self.results.values() if r.metadata is not None]
        if not metas:
            return StageReport(stage, 0, "", 0.0, 0)
        worst = max(metas, key=lambda m: m.level_used)
        return StageReport(
            stage=stage,
            level_used=worst.level_used,
            backend_used=worst.level_name,
            cost=round(sum(m.cost for m in metas), 6),
            generation_time_ms=max(m.generation_time_ms for m in metas),
        )


def decode_image(content: str) -> bytes:
    """Decode a base64 image body, rejecting empty or malformed data."""
    try:
        data = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError):
        raise ResponseValidationError("Image response is not valid base64") from None
    if not data:
        raise ResponseValidationError("Image response is empty")
    return data


class ImageGenerator:
    """Run the IMAGES stage.

    Parameters
    ----------
    client : Any
        Backend client exposing ``generate_image(prompt, options, level=...)``.
    levels : Sequence[FallbackLevel]
        Image levels, ending with the placeholder level.
    store : ObjectStore
        Where generated images are written.
    bucket : str, optional
        Bucket for generated images.
    max_concurrent : int, optional
        Upper bound on simultaneous image tasks.
    target_rpm : int, optional
        Requests per minute allowed towards the image backend.
    breakers, retry_config, events
        Passed through to :class:`FallbackChain` with any further keyword
        arguments.
    """

    stage = "images"

    def __init__(
        self,
        client: Any,
        levels: Sequence[FallbackLevel],
        store: ObjectStore,
        *,
        bucket: str = DEFAULT_ASSETS_BUCKET,
        max_concurrent: int = MAX_CONCURRENT_IMAGES,
        target_rpm: int = TARGET_RPM,
        breakers: CircuitBreakerRegistry | None = None,
        retry_config: RetryConfig | None = None,
        events: EventSink | None = None,
        **chain_kwargs: Any,
    ) -> None:
        self.client = client
        self.store = store
        self.bucket = bucket
        self.max_concurrent = max_concurrent
        self.target_rpm = target_rpm
        self.events = events or NullEventSink()
        self.limiter = AsyncLimiter(target_rpm, 60)
        self.chain: FallbackChain[ImageJob, str] = FallbackChain(
            "image",
            levels,
            self._call,
            self._terminal,
            retry_config=retry_config,
            breakers=breakers,
            events=self.events,
            **chain_kwargs,
        )

    async def _call(self, level: FallbackLevel, job: ImageJob) -> GenerationResult[str]:
        prompt = f"{job.section.image_prompt}{IMAGE_PROMPT_SUFFIX}"
        async with self.limiter:
            raw = await self.client.generate_image(prompt, level=level)
        data = decode_image(raw.content)
        key = IMAGE_KEY_FORMAT.format(store_id=job.store_id, section_id=job.section.id)
        url = await self.store.put(self.bucket, key, data, "image/png")
        return GenerationResult(content=url, usage=raw.usage)

    def _terminal(self, level: FallbackLevel, job: ImageJob) -> GenerationResult[str]:
        return GenerationResult(content=default_placeholder_url(job.section.id))

    def offline(self, spec: SiteSpec) -> ImageMap:
        """Placeholder URLs for every section that wants an image."""
        return {s.id: default_placeholder_url(s.id) for s in spec.sections_with_images()}

    async def generate(self, spec: SiteSpec, store_id: str) -> ImageStageResult:
        """Generate every section image concurrently.

        Returns
        -------
        ImageStageResult
            One image map entry per section with an image prompt.
        """
        sections = spec.sections_with_images()
        outcome = ImageStageResult()
        if not sections:
            return outcome
        logger.info("Generating images for %d section(s)", len(sections))
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run_one(section: SiteSection) -> tuple[str, GenerationResult[str]]:
            async with semaphore:
                result = await self.chain.run(ImageJob(section, store_id))
            return section.id, result

        results = await asyncio.gather(*(run_one(s) for s in sections))
        for section_id, result in results:
            outcome.images[section_id] = result.content
            outcome.results[section_id] = result
        for section_id in outcome.fallbacks:
            self.events.emit(
                ImageFallback(section_id=section_id, reason="online image levels failed")
            )
        return outcome
