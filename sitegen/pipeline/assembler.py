"""Merge generated markup with image URLs.

Generated HTML refers to section images through placeholder tokens of the
form ``{{IMAGE_URL_<sectionId>}}``. The assembler replaces every token in a
single regex pass: ids found in the image map get their URL, every other id
gets a deterministic placeholder-image URL. The output therefore never
contains a token, and assembling it again changes nothing.

Examples
--------
>>> AssetAssembler().assemble("<img src='{{IMAGE_URL_hero}}'>", {"hero": "https://x/y.png"})
"<img src='https://x/y.png'>"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Mapping
from urllib.parse import quote

from sitegen.config import DEFAULT_PLACEHOLDER_SIZE, IMAGE_PLACEHOLDER_BASE_URL

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{IMAGE_URL_([A-Za-z0-9_-]+)\}\}")
TOKEN_PREFIX = "{{IMAGE_URL_"


def placeholder_token(section_id: str) -> str:
    return f"{{{{IMAGE_URL_{section_id}}}}}"


def default_placeholder_url(section_id: str) -> str:
    """Return the generic placeholder-image URL for ``section_id``."""
    return (
        f"{IMAGE_PLACEHOLDER_BASE_URL}/{DEFAULT_PLACEHOLDER_SIZE}"
        f"?text={quote(section_id, safe='')}"
    )


def find_placeholders(html: str) -> list[str]:
    """Return the section ids referenced by tokens, in order of appearance."""
    return PLACEHOLDER_PATTERN.findall(html)


@dataclass(frozen=True)
class AssemblyReport:
    html: str
    replaced: int
    defaulted: int


class AssetAssembler:
    """Substitute image tokens in generated HTML.

    Parameters
    ----------
    placeholder_url : callable, optional
        Maps a section id to the URL used when the image map has no usable
        entry for it.
    """

    def __init__(
        self, placeholder_url: Callable[[str], str] = default_placeholder_url
    ) -> None:
        self.placeholder_url = placeholder_url

    def _usable(self, url: str | None) -> bool:
        return bool(url) and TOKEN_PREFIX not in url

    def assemble_with_report(
        self, html: str, image_map: Mapping[str, str]
    ) -> AssemblyReport:
        counts = {"replaced": 0, "defaulted": 0}

        def substitute(match: re.Match[str]) -> str:
            section_id = match.group(1)
            url = image_map.get(section_id)
            if self._usable(url):
                counts["replaced"] += 1
                return url  # type: ignore[return-value]
            counts["defaulted"] += 1
            return self.placeholder_url(section_id)

        assembled = PLACEHOLDER_PATTERN.sub(substitute, html)
        if counts["defaulted"]:
            logger.info(
                "Assembled HTML: %d image(s) replaced, %d defaulted to placeholders",
                counts["replaced"],
                counts["defaulted"],
            )
        return AssemblyReport(assembled, counts["replaced"], counts["defaulted"])

    def assemble(self, html: str, image_map: Mapping[str, str]) -> str:
        """Return ``html`` with every placeholder token replaced."""
        return self.assemble_with_report(html, image_map).html
