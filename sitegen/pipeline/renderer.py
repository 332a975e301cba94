"""Offline HTML rendering for site specs.

This module turns a ``SiteSpec`` into a complete, self-contained HTML
document with an inline stylesheet and no external scripts. It is the
terminal level of the CODE stage and the renderer used by the offline
pipeline path, so it performs no I/O and raises only on programming errors.

Section text may contain Markdown; it is converted with ``markdown2`` and
normalized with :func:`clean_html_output`. Sections that carry an image
prompt get an ``<img>`` whose ``src`` is the section's placeholder token,
resolved later by the assembler.

Example
-------
>>> from sitegen.backends.templates import build_template_spec
>>> from sitegen.models import GenerationRequest
>>> html = render_site(build_template_spec(GenerationRequest("Corner Cafe", "restaurant")))
>>> html.startswith("<!DOCTYPE html>") and html.rstrip().endswith("</html>")
True
"""

from __future__ import annotations

import html as html_lib
import re
from pathlib import Path
from typing import Any

import markdown2

from sitegen.backends.templates import theme_colors
from sitegen.models import SiteSection, SiteSpec, safe_color
from sitegen.pipeline.assembler import placeholder_token

_MARKDOWN_EXTRAS = ["tables", "fenced-code-blocks"]

_STYLESHEET = """
:root {{ --primary: {primary}; --secondary: {secondary}; }}
* {{ box-sizing: border-box; }}
body {{ margin: 0; font-family: Inter, system-ui, sans-serif; color: #1f2937; background: #f9fafb; }}
header {{ background: #fff; box-shadow: 0 1px 3px rgba(0,0,0,.08); }}
nav {{ max-width: 72rem; margin: 0 auto; padding: 1rem 1.5rem; display: flex; gap: 1.5rem; align-items: center; }}
nav .brand {{ font-weight: 700; font-size: 1.25rem; margin-right: auto; color: var(--primary); }}
nav a {{ color: #374151; text-decoration: none; }}
main {{ max-width: 72rem; margin: 0 auto; padding: 2rem 1.5rem; }}
section {{ margin-bottom: 4rem; }}
section.hero {{ text-align: center; padding: 3rem 1rem; border-radius: 1rem; background: linear-gradient(135deg, var(--primary), var(--secondary)); color: #fff; }}
h2 {{ font-size: 2rem; margin: 0 0 .5rem; }}
.subtitle {{ color: #6b7280; margin: 0 0 1.5rem; }}
section.hero .subtitle {{ color: #f3f4f6; }}
img {{ width: 100%; border-radius: .75rem; margin-top: 1.5rem; }}
.items {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(14rem, 1fr)); gap: 1.5rem; }}
.item {{ background: #fff; border-radius: .75rem; padding: 1.25rem; box-shadow: 0 1px 3px rgba(0,0,0,.06); }}
.cta {{ display: inline-block; margin-top: 1rem; padding: .75rem 1.5rem; border-radius: 9999px; background: #fff; color: var(--primary); font-weight: 600; text-decoration: none; }}
footer {{ background: #1f2937; color: #fff; text-align: center; padding: 2rem; }}
"""


def clean_html_output(html_content: str) -> str:
    r"""Normalize an HTML fragment produced by Markdown conversion.

    Removes empty paragraphs and repeated breaks and collapses whitespace
    between tags.

    Raises
    ------
    TypeError
        If input is not str.

    Examples
    --------
    >>> clean_html_output("<p></p><h1>Hi</h1><p>&nbsp;</p><br><br>")
    '<h1>Hi</h1><br>'
    """
    if not isinstance(html_content, str):
        raise TypeError("Input must be a string.")
    html_content = re.sub(r"<p>\s*</p>", "", html_content)
    html_content = re.sub(r"<p>&nbsp;</p>", "", html_content)
    html_content = re.sub(r"<p><br\s*/?>\s*</p>", "", html_content)
    html_content = re.sub(r"(<br\s*/?>\s*){2,}", "<br>", html_content)
    html_content = re.sub(r">\s+<", "><", html_content)
    return html_content.strip()


def render_markdown(text: str) -> str:
    """Convert Markdown text to a cleaned HTML fragment."""
    return clean_html_output(markdown2.markdown(text, extras=_MARKDOWN_EXTRAS))


def _esc(value: Any) -> str:
    return html_lib.escape(str(value), quote=True)


def _render_content(content: dict[str, Any]) -> str:
    parts: list[str] = []
    for key, value in content.items():
        if key == "cta":
            parts.append(f'<a class="cta" href="#contact">{_esc(value)}</a>')
        elif key == "items" and isinstance(value, list):
            cards = []
            for item in value:
                if isinstance(item, dict):
                    title = _esc(item.get("title") or item.get("name") or "")
                    body = render_markdown(str(item.get("text") or item.get("description") or ""))
                    cards.append(f'<div class="item"><h3>{title}</h3>{body}</div>')
                else:
                    cards.append(f'<div class="item">{render_markdown(str(item))}</div>')
            parts.append(f'<div class="items">{"".join(cards)}</div>')
        elif isinstance(value, str) and value:
            parts.append(f'<div class="{_esc(key)}">{render_markdown(value)}</div>')
        elif isinstance(value, (int, float)):
            parts.append(f'<p class="{_esc(key)}">{_esc(value)}</p>')
    return "".join(parts)


def render_section(section: SiteSection) -> str:
    pieces = [
        f'<section id="{_esc(section.id)}" data-section-id="{_esc(section.id)}" '
        f'class="{_esc(section.type)}">'
    ]
    if section.title:
        pieces.append(f"<h2>{_esc(section.title)}</h2>")
    if section.subtitle:
        pieces.append(f'<p class="subtitle">{_esc(section.subtitle)}</p>')
    pieces.append(_render_content(section.content))
    if section.image_prompt:
        pieces.append(
            f'<img src="{placeholder_token(section.id)}" alt="{_esc(section.title or section.id)}" loading="lazy">'
        )
    pieces.append("</section>")
    return "\n".join(p for p in pieces if p)


def render_stylesheet(spec: SiteSpec) -> str:
    primary = safe_color(spec.meta.theme_color, theme_colors("general")[0])
    secondary = theme_colors("general")[1]
    for colors in (theme_colors(k) for k in spec.meta.keywords):
        if colors[0] == primary:
            secondary = colors[1]
            break
    return _STYLESHEET.format(primary=primary, secondary=secondary).strip()


def render_site(spec: SiteSpec) -> str:
    """Render ``spec`` as a complete HTML document with inline styles."""
    nav_links = "".join(
        f'<a href="#{_esc(item.section_id)}">{_esc(item.label)}</a>'
        for item in spec.navigation
    )
    sections = "\n".join(render_section(s) for s in spec.sections)
    keywords = ", ".join(spec.meta.keywords)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{_esc(spec.meta.title)}</title>
<meta name="description" content="{_esc(spec.meta.description)}">
<meta name="keywords" content="{_esc(keywords)}">
<meta name="theme-color" content="{_esc(spec.meta.theme_color)}">
<style>
{render_stylesheet(spec)}
</style>
</head>
<body>
<header><nav><span class="brand">{_esc(spec.meta.title)}</span>{nav_links}</nav></header>
<main>
{sections}
</main>
<footer><p>&copy; {_esc(spec.meta.title)}. All rights reserved.</p></footer>
</body>
</html>
"""


def write_html_output(html_content: str, output_file: Path) -> None:
    """Write ``html_content`` to ``output_file``, creating parent directories."""
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(html_content, encoding="utf-8")
