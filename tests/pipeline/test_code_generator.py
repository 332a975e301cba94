"""Tests for the CODE stage and its HTML hygiene."""

from __future__ import annotations

import pytest

from sitegen.backends.templates import build_template_spec
from sitegen.exceptions import ResponseValidationError
from sitegen.models import FallbackLevel, GenerationRequest, GenerationResult
from sitegen.pipeline.assembler import find_placeholders
from sitegen.pipeline.code_generator import CodeGenerator, clean_generated_html
from sitegen.resilience.breaker import CircuitBreakerRegistry

LEVELS = [
    FallbackLevel("claude", "anthropic.claude-3-haiku", 0.001, 5.0),
    FallbackLevel("rule-based-template", "internal-templates", 0.0, 5.0),
]

PAGE = (
    "<html><head><script src=\"https://cdn.tailwindcss.com\"></script></head>"
    "<body><section data-section-id=\"hero\"><img src=\"{{IMAGE_URL_hero}}\"></section>"
    "</body></html>"
)


class FakeTextClient:
    def __init__(self, answer) -> None:
        self.answer = answer
        self.prompts: list[str] = []

    async def generate_text(self, level, prompt, options=None):
        self.prompts.append(prompt)
        if isinstance(self.answer, Exception):
            raise self.answer
        return GenerationResult(content=self.answer, usage={"output_tokens": 42})


async def no_sleep(delay):
    return None


def make_stage(answer) -> tuple[CodeGenerator, FakeTextClient]:
    client = FakeTextClient(answer)
    stage = CodeGenerator(client, LEVELS, breakers=CircuitBreakerRegistry(), sleep=no_sleep)
    return stage, client


SPEC = build_template_spec(GenerationRequest("Green Basket", "grocery", location="Pune"))


def test_clean_adds_doctype_and_strips_fence():
    html = clean_generated_html("```html\n" + PAGE + "\n```")
    assert html.startswith("<!DOCTYPE html>\n<html>")
    assert html.endswith("</html>")


def test_clean_cuts_document_out_of_prose():
    html = clean_generated_html(
        "Here is the page:\n<!DOCTYPE html>" + PAGE + "\nLet me know if you need changes."
    )
    assert html.startswith("<!DOCTYPE html>")
    assert html.endswith("</html>")
    assert "Let me know" not in html


def test_clean_rejects_unterminated_document():
    with pytest.raises(ResponseValidationError):
        clean_generated_html("<html><body>truncated")


def test_clean_drops_foreign_scripts_but_keeps_tailwind_and_inline():
    page = (
        "<html><head>"
        '<script src="https://cdn.tailwindcss.com"></script>'
        "<script>tailwind.config = {}</script>"
        '<script src="https://tracker.example/t.js"></script>'
        "</head><body></body></html>"
    )
    html = clean_generated_html(page)
    assert "cdn.tailwindcss.com" in html
    assert "tailwind.config" in html
    assert "tracker.example" not in html


@pytest.mark.asyncio
async def test_model_html_is_accepted_at_first_level():
    stage, client = make_stage("```html\n" + PAGE + "\n```")
    result = await stage.generate(SPEC)
    assert result.metadata.level_used == 1
    assert result.content.html.startswith("<!DOCTYPE html>")
    assert find_placeholders(result.content.html) == ["hero"]
    assert result.usage == {"output_tokens": 42}


@pytest.mark.asyncio
async def test_truncated_html_falls_back_to_local_renderer():
    stage, _ = make_stage("<html><body><h1>Cut off")
    result = await stage.generate(SPEC)
    assert result.backend_used == "rule-based-template"
    html = result.content.html
    assert html.startswith("<!DOCTYPE html>")
    assert html.rstrip().endswith("</html>")
    assert set(find_placeholders(html)) == {"hero", "about"}
    assert "<script" not in html


def test_prompt_carries_spec_and_theme():
    stage, _ = make_stage(PAGE)
    system, user = stage.build_prompt(SPEC)
    assert "Tailwind" in system
    assert f"primary: '{SPEC.meta.theme_color}'" in user
    assert '"imagePrompt"' in user
    assert "{{IMAGE_URL_hero}}" in user


def test_offline_renders_without_client():
    stage, client = make_stage(RuntimeError("must not be called"))
    code = stage.offline(SPEC)
    assert code.css == ""
    assert "Green Basket" in code.html
    assert client.prompts == []
