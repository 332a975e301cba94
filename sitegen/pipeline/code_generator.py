"""CODE stage: render a ``SiteSpec`` to an HTML document.

Online levels are asked for a complete Tailwind-based page. Their answer is
cleaned before it is accepted: an enclosing code fence is removed, the
document is cut out of any surrounding prose, a missing ``<!DOCTYPE html>``
is added, and external scripts other than the Tailwind CDN are dropped. An
answer without a closing ``</html>`` is rejected so the chain falls through.
The terminal level renders the spec locally with inline styles.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Sequence

from sitegen.config import CODE_PROMPT_TEMPLATE_PATH, TAILWIND_CDN_HOST
from sitegen.events import EventSink
from sitegen.exceptions import ResponseValidationError
from sitegen.models import (
    FallbackLevel,
    GeneratedCode,
    GenerationOptions,
    GenerationResult,
    SiteSpec,
)
from sitegen.pipeline.assembler import find_placeholders
from sitegen.pipeline.prompts import load_prompt_template, render_prompt, strip_code_fence
from sitegen.pipeline.renderer import render_site
from sitegen.resilience.breaker import CircuitBreakerRegistry
from sitegen.resilience.fallback import FallbackChain
from sitegen.resilience.retry import RetryConfig

logger = logging.getLogger(__name__)

_DOCUMENT_PATTERNS = (
    re.compile(r"<!DOCTYPE html>.*</html>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<html.*</html>", re.DOTALL | re.IGNORECASE),
)
_EXTERNAL_SCRIPT = re.compile(
    r"<script\b[^>]*\bsrc=[\"']([^\"']+)[\"'][^>]*>\s*</script>|<script\b[^>]*\bsrc=[\"']([^\"']+)[\"'][^>]*>",
    re.IGNORECASE,
)


def clean_generated_html(text: str) -> str:
    """Turn a raw model answer into a standalone HTML document.

    Raises
    ------
    ResponseValidationError
        If no closing ``</html>`` tag is present.

    Examples
    --------
    >>> clean_generated_html("```html\\n<html><body></body></html>\\n```")
    '<!DOCTYPE html>\\n<html><body></body></html>'
    """
    html = strip_code_fence(text)
    for pattern in _DOCUMENT_PATTERNS:
        match = pattern.search(html)
        if match:
            html = match.group(0)
            break
    if "</html>" not in html.lower():
        raise ResponseValidationError(
            "Invalid HTML: missing closing </html> tag", context={"size": len(html)}
        )
    if "<!doctype html>" not in html.lower():
        html = "<!DOCTYPE html>\n" + html

    def drop_foreign(match: re.Match[str]) -> str:
        src = match.group(1) or match.group(2) or ""
        if TAILWIND_CDN_HOST in src:
            return match.group(0)
        logger.warning("Removing external script: %s", src)
        return ""

    return _EXTERNAL_SCRIPT.sub(drop_foreign, html)


class CodeGenerator:
    """Run the CODE stage through its own fallback chain.

    Parameters
    ----------
    client : Any
        Backend client exposing ``generate_text(level, prompt, options)``.
    levels : Sequence[FallbackLevel]
        Text levels, ending with the rule-based template level.
    breakers, retry_config, events
        Passed through to :class:`FallbackChain` with any further keyword
        arguments.
    template_path : Path, optional
        Prompt template with ``SYSTEM:``/``USER:`` sections.
    """

    stage = "code"

    def __init__(
        self,
        client: Any,
        levels: Sequence[FallbackLevel],
        *,
        breakers: CircuitBreakerRegistry | None = None,
        retry_config: RetryConfig | None = None,
        events: EventSink | None = None,
        template_path: Path = CODE_PROMPT_TEMPLATE_PATH,
        options: GenerationOptions | None = None,
        **chain_kwargs: Any,
    ) -> None:
        self.client = client
        self.template = load_prompt_template(template_path)
        self.options = options or GenerationOptions()
        self.chain: FallbackChain[SiteSpec, GeneratedCode] = FallbackChain(
            self.stage,
            levels,
            self._call,
            self._terminal,
            retry_config=retry_config,
            breakers=breakers,
            events=events,
            **chain_kwargs,
        )

    def build_prompt(self, spec: SiteSpec) -> tuple[str, str]:
        sections = spec.to_dict()["sections"]
        return render_prompt(
            self.template,
            {
                "theme_color": spec.meta.theme_color,
                "title": spec.meta.title,
                "sections_json": json.dumps(sections, ensure_ascii=False, indent=2),
            },
        )

    async def _call(
        self, level: FallbackLevel, spec: SiteSpec
    ) -> GenerationResult[GeneratedCode]:
        system, user = self.build_prompt(spec)
        options = GenerationOptions(
            max_tokens=self.options.max_tokens,
            temperature=self.options.temperature,
            system=system,
        )
        raw = await self.client.generate_text(level, user, options)
        html = clean_generated_html(raw.content)
        logger.info(
            "HTML from %s: %d bytes, %d image placeholder(s)",
            level.name,
            len(html),
            len(find_placeholders(html)),
        )
        return GenerationResult(content=GeneratedCode(html=html), usage=raw.usage)

    def _terminal(
        self, level: FallbackLevel, spec: SiteSpec
    ) -> GenerationResult[GeneratedCode]:
        return GenerationResult(content=self.offline(spec))

    def offline(self, spec: SiteSpec) -> GeneratedCode:
        """Render the page locally with inline styles."""
        return GeneratedCode(html=render_site(spec))

    async def generate(self, spec: SiteSpec) -> GenerationResult[GeneratedCode]:
        return await self.chain.run(spec)
