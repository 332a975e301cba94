"""Sequence the generation stages into one website.

Stages run strictly in order, each consuming the previous stage's output:

    SPEC -> CODE -> IMAGES -> ASSEMBLE -> PUBLISH

SPEC, CODE and IMAGES each run their own fallback chain. Between stages the
orchestrator checks that the hand-off is usable (a spec with sections, a
closed HTML document, an assembled page with a doctype). If any
application error escapes SPEC..ASSEMBLE, the whole run is rebuilt on the
local path: template spec, inline-styled HTML, placeholder images, with no
further network calls. A failing terminal level is a defect and is raised
as is. PUBLISH errors always reach the caller.

Examples
--------
>>> # orchestrator = build_orchestrator(ctx)
>>> # asset = await orchestrator.generate_website(request, "tenant-1", "store-1")
>>> # asset.website_url
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sitegen.config import DEFAULT_BEDROCK_REGION, DEFAULT_STORAGE_REGION
from sitegen.events import (
    EventSink,
    NullEventSink,
    PipelineDegraded,
    StageCompleted,
    StageStarted,
)
from sitegen.exceptions import AppError, StageError, TerminalPipelineError
from sitegen.models import (
    GeneratedAsset,
    GeneratedCode,
    GenerationRequest,
    GenerationResult,
    ImageMap,
    SiteSpec,
    StageReport,
)
from sitegen.pipeline.assembler import TOKEN_PREFIX, AssetAssembler

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"
PREVIEW_URL_PREFIX = "data:text/html;base64,"


@dataclass
class _Build:
    spec: SiteSpec
    code: GeneratedCode
    images: ImageMap
    html: str
    replaced: int
    reports: list[StageReport] = field(default_factory=list)
    mode: str = ONLINE
    degraded_reason: str | None = None
    degraded_stage: str | None = None
    website_url: str = ""


def preview_url(html: str) -> str:
    """Return a self-contained ``data:`` URL for ``html``."""
    return PREVIEW_URL_PREFIX + base64.b64encode(html.encode("utf-8")).decode("ascii")


def _report(stage: str, result: GenerationResult[Any]) -> StageReport:
    meta = result.metadata
    if meta is None:
        return StageReport(stage, 0, result.backend_used, 0.0, 0)
    return StageReport(
        stage=stage,
        level_used=meta.level_used,
        backend_used=meta.level_name,
        cost=meta.cost,
        generation_time_ms=meta.generation_time_ms,
    )


class PipelineOrchestrator:
    """Run one website generation end to end.

    Parameters
    ----------
    spec_stage, code_stage, image_stage
        Stage objects exposing ``generate(...)`` for the online path,
        ``offline(...)`` for the local path and a ``chain`` attribute.
    publisher : WebsitePublisher | None
        Makes the result live. Without one, the site URL is a ``data:``
        preview of the assembled page.
    assembler : AssetAssembler, optional
        Placeholder substitution.
    events : EventSink, optional
        Receives stage and degradation records.
    offline : bool, optional
        Always use the local path (no model access).
    clock : callable, optional
        Monotonic clock in seconds.
    region, storage_region : str, optional
        Reported in the result metadata.
    """

    def __init__(
        self,
        spec_stage: Any,
        code_stage: Any,
        image_stage: Any,
        publisher: Any = None,
        *,
        assembler: AssetAssembler | None = None,
        events: EventSink | None = None,
        offline: bool = False,
        clock: Callable[[], float] = time.monotonic,
        region: str = DEFAULT_BEDROCK_REGION,
        storage_region: str = DEFAULT_STORAGE_REGION,
    ) -> None:
        self.spec_stage = spec_stage
        self.code_stage = code_stage
        self.image_stage = image_stage
        self.publisher = publisher
        self.assembler = assembler or AssetAssembler()
        self.events = events or NullEventSink()
        self.offline = offline
        self.clock = clock
        self.region = region
        self.storage_region = storage_region

    def _ms_since(self, start: float) -> int:
        return int(max(self.clock() - start, 0.0) * 1000)

    def _completed(self, report: StageReport) -> StageReport:
        self.events.emit(
            StageCompleted(
                stage=report.stage,
                level_used=report.level_used,
                backend_used=report.backend_used,
                duration_ms=report.generation_time_ms,
            )
        )
        return report

    def _assemble(self, html: str, images: ImageMap) -> tuple[str, int, int]:
        start = self.clock()
        self.events.emit(StageStarted(stage="assemble"))
        report = self.assembler.assemble_with_report(html, images)
        lowered = report.html.lower()
        if "<!doctype html>" not in lowered or "</html>" not in lowered:
            raise StageError("assemble", "Assembled page is not a complete HTML document")
        if TOKEN_PREFIX in report.html:
            raise StageError("assemble", "Assembled page still contains image placeholders")
        return report.html, report.replaced, self._ms_since(start)

    async def _run_online(
        self, request: GenerationRequest, store_id: str, progress: dict[str, str]
    ) -> _Build:
        reports: list[StageReport] = []

        progress["stage"] = "spec"
        self.events.emit(StageStarted(stage="spec"))
        spec_result = await self.spec_stage.generate(request)
        spec = spec_result.content
        if not spec.sections:
            raise StageError("spec", "Site spec has no sections")
        reports.append(self._completed(_report("spec", spec_result)))

        progress["stage"] = "code"
        self.events.emit(StageStarted(stage="code"))
        code_result = await self.code_stage.generate(spec)
        code = code_result.content
        if "</html>" not in code.html.lower():
            raise StageError("code", "Generated HTML lacks a closing </html> tag")
        reports.append(self._completed(_report("code", code_result)))

        progress["stage"] = "images"
        self.events.emit(StageStarted(stage="images"))
        image_result = await self.image_stage.generate(spec, store_id)
        reports.append(self._completed(image_result.report("images")))

        progress["stage"] = "assemble"
        html, replaced, elapsed = self._assemble(code.html, image_result.images)
        reports.append(self._completed(StageReport("assemble", 1, "assembler", 0.0, elapsed)))
        return _Build(spec, code, dict(image_result.images), html, replaced, reports)

    def _offline_report(self, name: str, stage: Any, start: float) -> StageReport:
        levels = stage.chain.levels
        return self._completed(
            StageReport(name, len(levels), levels[-1].name, 0.0, self._ms_since(start))
        )

    def _run_offline(self, request: GenerationRequest) -> _Build:
        """Build the site on the local path; any failure here is a defect."""
        reports: list[StageReport] = []
        try:
            start = self.clock()
            self.events.emit(StageStarted(stage="spec"))
            spec = self.spec_stage.offline(request)
            reports.append(self._offline_report("spec", self.spec_stage, start))

            start = self.clock()
            self.events.emit(StageStarted(stage="code"))
            code = self.code_stage.offline(spec)
            reports.append(self._offline_report("code", self.code_stage, start))

            start = self.clock()
            self.events.emit(StageStarted(stage="images"))
            images = self.image_stage.offline(spec)
            reports.append(self._offline_report("images", self.image_stage, start))

            html, replaced, elapsed = self._assemble(code.html, images)
            reports.append(self._completed(StageReport("assemble", 1, "assembler", 0.0, elapsed)))
        except TerminalPipelineError:
            raise
        except Exception as exc:
            raise TerminalPipelineError(
                f"Offline generation failed: {exc}", context={"stage": "offline"}
            ) from exc
        return _Build(spec, code, dict(images), html, replaced, reports, mode=OFFLINE)

    async def _publish(self, build: _Build, tenant_id: str, store_id: str) -> StageReport:
        start = self.clock()
        self.events.emit(StageStarted(stage="publish"))
        if self.publisher is None:
            url = preview_url(build.html)
            backend = "preview"
        else:
            url = await self.publisher.publish(
                build.html, build.code.css, build.spec, tenant_id, store_id
            )
            backend = "publisher"
        build.website_url = url
        return self._completed(StageReport("publish", 1, backend, 0.0, self._ms_since(start)))

    async def generate_website(
        self, request: GenerationRequest, tenant_id: str, store_id: str
    ) -> GeneratedAsset:
        """Generate, assemble and publish a website for ``request``.

        Returns
        -------
        GeneratedAsset
            The complete site with per-stage metadata.

        Raises
        ------
        TerminalPipelineError
            If a guaranteed local step fails.
        PublishError
            If the site cannot be made live.
        """
        start = self.clock()
        logger.info(
            "Generating website for %r (tenant=%s, store=%s, offline=%s)",
            request.business_name,
            tenant_id,
            store_id,
            self.offline,
        )
        if self.offline:
            build = self._run_offline(request)
            build.degraded_reason = "offline mode"
        else:
            progress = {"stage": "spec"}
            try:
                build = await self._run_online(request, store_id, progress)
            except TerminalPipelineError:
                raise
            except AppError as exc:
                stage = exc.stage if isinstance(exc, StageError) else progress["stage"]
                logger.warning("Degrading to offline generation after %s failure: %s", stage, exc)
                self.events.emit(PipelineDegraded(reason=str(exc), stage=stage))
                build = self._run_offline(request)
                build.degraded_reason = str(exc)
                build.degraded_stage = stage

        publish_report = await self._publish(build, tenant_id, store_id)
        build.reports.append(publish_report)
        website_url = build.website_url

        metadata: dict[str, Any] = {
            "generation_time_ms": self._ms_since(start),
            "mode": build.mode,
            "region": self.region,
            "storage_region": self.storage_region,
            "tenant_id": tenant_id,
            "store_id": store_id,
            "stages": {r.stage: r.to_dict() for r in build.reports},
            "total_cost": round(sum(r.cost for r in build.reports), 6),
            "sections_generated": len(build.spec.sections),
            "images_generated": len(build.images),
            "html_size": len(build.html),
            "placeholders_replaced": build.replaced,
        }
        if build.degraded_reason:
            metadata["degraded_reason"] = build.degraded_reason
        if build.degraded_stage:
            metadata["degraded_stage"] = build.degraded_stage
        logger.info(
            "Website ready in %d ms (%s mode): %s",
            metadata["generation_time_ms"],
            build.mode,
            website_url if self.publisher is not None else "preview",
        )
        return GeneratedAsset(
            html=build.html,
            css=build.code.css,
            images=build.images,
            config=build.spec,
            website_url=website_url,
            metadata=metadata,
        )
