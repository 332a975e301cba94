"""SPEC stage: turn a business description into a validated ``SiteSpec``.

The stage renders the spec prompt, asks each text level in turn for a JSON
site specification, and accepts an answer only if the whole response (after
removing one enclosing code fence) parses as a JSON object that validates as
a ``SiteSpec``. Prose around the JSON is rejected, so the chain moves on to
the next level instead of guessing which brace-delimited span was meant.
The terminal level builds the spec from rule-based templates.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Sequence

from sitegen.backends.templates import build_template_spec
from sitegen.config import SPEC_PROMPT_TEMPLATE_PATH
from sitegen.events import EventSink
from sitegen.exceptions import ResponseValidationError
from sitegen.models import (
    FallbackLevel,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    SiteSpec,
)
from sitegen.pipeline.prompts import load_prompt_template, render_prompt, strip_code_fence
from sitegen.resilience.breaker import CircuitBreakerRegistry
from sitegen.resilience.fallback import FallbackChain
from sitegen.resilience.retry import RetryConfig

logger = logging.getLogger(__name__)


def parse_spec_response(text: str) -> SiteSpec:
    """Parse a model answer into a ``SiteSpec``.

    Raises
    ------
    ResponseValidationError
        If the text is not exactly one JSON object describing a valid spec.

    Examples
    --------
    >>> parse_spec_response('Here you go: {"meta": {}}')
    Traceback (most recent call last):
    ...
    sitegen.exceptions.ResponseValidationError: DATA_VALIDATION_ERROR: Spec response is not valid JSON
    """
    body = strip_code_fence(text)
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise ResponseValidationError(
            "Spec response is not valid JSON", context={"preview": body[:120]}
        ) from None
    return SiteSpec.from_dict(data)


class SpecGenerator:
    """Run the SPEC stage through its own fallback chain.

    Parameters
    ----------
    client : Any
        Backend client exposing ``generate_text(level, prompt, options)``.
    levels : Sequence[FallbackLevel]
        Text levels, ending with the rule-based template level.
    breakers, retry_config, events
        Passed through to :class:`FallbackChain`, as are any further keyword
        arguments (``region``, ``clock``, ``sleep``).
    template_path : Path, optional
        Prompt template with ``SYSTEM:``/``USER:`` sections.
    options : GenerationOptions, optional
        Token and temperature settings.
    """

    stage = "spec"

    def __init__(
        self,
        client: Any,
        levels: Sequence[FallbackLevel],
        *,
        breakers: CircuitBreakerRegistry | None = None,
        retry_config: RetryConfig | None = None,
        events: EventSink | None = None,
        template_path: Path = SPEC_PROMPT_TEMPLATE_PATH,
        options: GenerationOptions | None = None,
        **chain_kwargs: Any,
    ) -> None:
        self.client = client
        self.template = load_prompt_template(template_path)
        self.options = options or GenerationOptions()
        self.chain: FallbackChain[GenerationRequest, SiteSpec] = FallbackChain(
            self.stage,
            levels,
            self._call,
            self._terminal,
            retry_config=retry_config,
            breakers=breakers,
            events=events,
            **chain_kwargs,
        )

    def build_prompt(self, request: GenerationRequest) -> tuple[str, str]:
        return render_prompt(
            self.template,
            {
                "business_name": request.business_name,
                "business_type": request.business_type,
                "location": request.location or "Global",
                "description": request.description or "N/A",
                "language": request.language,
                "theme": request.theme_preference or "any",
            },
        )

    async def _call(
        self, level: FallbackLevel, request: GenerationRequest
    ) -> GenerationResult[SiteSpec]:
        system, user = self.build_prompt(request)
        options = GenerationOptions(
            max_tokens=self.options.max_tokens,
            temperature=self.options.temperature,
            system=system,
        )
        raw = await self.client.generate_text(level, user, options)
        spec = parse_spec_response(raw.content)
        logger.debug("Spec from %s has %d sections", level.name, len(spec.sections))
        return GenerationResult(content=spec, usage=raw.usage)

    def _terminal(
        self, level: FallbackLevel, request: GenerationRequest
    ) -> GenerationResult[SiteSpec]:
        return GenerationResult(
            content=self.offline(request), usage={"input_tokens": 0, "output_tokens": 0}
        )

    def offline(self, request: GenerationRequest) -> SiteSpec:
        """Build the spec without any network call."""
        return build_template_spec(request)

    async def generate(self, request: GenerationRequest) -> GenerationResult[SiteSpec]:
        return await self.chain.run(request)
