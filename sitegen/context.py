"""Application context: construction and wiring of long-lived collaborators.

Everything that would otherwise be a process-wide singleton (the HTTP
session, the model client, the breaker registry, the event sink, storage)
is built once here and handed to the pipeline explicitly.

Examples
--------
>>> # async with open_context(GeneratorConfig(offline=True)) as ctx:
>>> #     orchestrator = build_orchestrator(ctx)
>>> #     asset = await orchestrator.generate_website(request, "t1", "s1")
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import aiohttp

from sitegen.backends.client import BedrockRuntimeClient
from sitegen.backends.config import GeneratorConfig
from sitegen.events import EventSink, LoggingEventSink
from sitegen.pipeline.code_generator import CodeGenerator
from sitegen.pipeline.image_generator import ImageGenerator
from sitegen.pipeline.orchestrator import PipelineOrchestrator
from sitegen.pipeline.publisher import WebsitePublisher
from sitegen.pipeline.spec_generator import SpecGenerator
from sitegen.resilience.breaker import CircuitBreakerRegistry
from sitegen.storage import JsonFileRegistry, LocalObjectStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Collaborators shared by every generation run of one process."""

    config: GeneratorConfig
    session: aiohttp.ClientSession
    client: BedrockRuntimeClient
    store: LocalObjectStore
    registry: JsonFileRegistry
    breakers: CircuitBreakerRegistry
    events: EventSink


@asynccontextmanager
async def open_context(
    config: GeneratorConfig, events: EventSink | None = None
) -> AsyncIterator[AppContext]:
    """Create an :class:`AppContext` and close its HTTP session on exit."""
    sink = events or LoggingEventSink()
    session = aiohttp.ClientSession()
    try:
        yield AppContext(
            config=config,
            session=session,
            client=BedrockRuntimeClient(config, session),
            store=LocalObjectStore(config.storage_dir, config.public_base_url),
            registry=JsonFileRegistry(config.registry_file),
            breakers=CircuitBreakerRegistry(events=sink),
            events=sink,
        )
    finally:
        await session.close()
        logger.debug("HTTP session closed")


def build_orchestrator(ctx: AppContext, *, publish: bool = True) -> PipelineOrchestrator:
    """Wire the three stages, the publisher and the orchestrator from ``ctx``.

    Parameters
    ----------
    ctx : AppContext
        Shared collaborators.
    publish : bool, optional
        When False the orchestrator returns a ``data:`` preview URL instead
        of publishing.
    """
    cfg = ctx.config
    shared = {"breakers": ctx.breakers, "events": ctx.events, "region": cfg.region}
    text_levels = cfg.text_levels()
    publisher = (
        WebsitePublisher(
            ctx.store,
            ctx.registry,
            bucket=cfg.websites_bucket,
            cloudfront_domain=cfg.cloudfront_domain,
        )
        if publish
        else None
    )
    return PipelineOrchestrator(
        SpecGenerator(ctx.client, text_levels, **shared),
        CodeGenerator(ctx.client, text_levels, **shared),
        ImageGenerator(
            ctx.client,
            cfg.image_levels(),
            ctx.store,
            bucket=cfg.assets_bucket,
            max_concurrent=cfg.max_concurrent_images,
            target_rpm=cfg.target_rpm,
            **shared,
        ),
        publisher,
        events=ctx.events,
        offline=cfg.offline,
        region=cfg.region,
        storage_region=cfg.storage_region,
    )
