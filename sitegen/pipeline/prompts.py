"""Prompt template loading and model-output cleanup shared by the stages.

Prompt templates are plain text files with a ``SYSTEM:`` section followed by
a ``USER:`` section. ``{name}`` fields are filled in one pass and unknown
fields are left as they are, so templates may contain literal JSON and
``{{...}}`` tokens.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

_FENCE_PATTERN = re.compile(
    r"^\s*```(?:[a-zA-Z0-9]+\s*\n)?(.*?)\n?```\s*$", re.DOTALL | re.IGNORECASE
)
_FIELD_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def load_prompt_template(template_path: Path) -> str:
    """Load a UTF-8 prompt template from disk.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    with Path(template_path).open("r", encoding="utf-8") as fh:
        return fh.read()


def render_prompt(template: str, values: Mapping[str, str]) -> tuple[str, str]:
    """Split ``template`` into ``(system, user)`` text and fill its fields.

    The template is split on its own markers before any field is filled, and
    each part is filled in a single pass, so values are inserted verbatim:
    a value containing ``USER:`` or ``{name}`` is never reinterpreted.

    Raises
    ------
    ValueError
        If the template lacks the ``SYSTEM:`` or ``USER:`` marker.

    Examples
    --------
    >>> render_prompt("SYSTEM: be brief USER: hi {name}", {"name": "Ada"})
    ('be brief', 'hi Ada')
    """
    system_start = template.find("SYSTEM:")
    user_start = template.find("USER:")
    if system_start == -1 or user_start == -1 or user_start < system_start:
        raise ValueError("Prompt template must contain 'SYSTEM:' and 'USER:' markers.")

    def fill(part: str) -> str:
        return _FIELD_PATTERN.sub(
            lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
            part,
        )

    system = fill(template[system_start + len("SYSTEM:") : user_start])
    user = fill(template[user_start + len("USER:") :])
    return system.strip(), user.strip()


def strip_code_fence(content: str) -> str:
    """Remove one Markdown code fence enclosing the whole text, if present.

    Examples
    --------
    >>> strip_code_fence("```json\\n{}\\n```")
    '{}'
    >>> strip_code_fence("plain")
    'plain'
    """
    if not isinstance(content, str):
        raise TypeError("content must be a string")
    cleaned = content.strip()
    match = _FENCE_PATTERN.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned
