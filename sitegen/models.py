"""Data model for one website generation run.

The records here are the structured hand-offs between pipeline stages:
``GenerationRequest`` feeds SPEC, ``SiteSpec`` feeds CODE and IMAGES,
``GeneratedCode`` plus the image map feed ASSEMBLE, and ``GeneratedAsset``
is what the caller receives. ``FallbackLevel`` and ``GenerationResult``
describe the resilience layer's view of a single backend attempt.

``SiteSpec.from_dict`` is the validation boundary for model output: anything
that does not fit the wire shape is reported as a ``ResponseValidationError``
so the fallback chain can move on to the next level.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, TypeVar

from sitegen.config import CSS_NAMED_COLORS, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from sitegen.exceptions import ResponseValidationError

T = TypeVar("T")

SECTION_TYPES: frozenset[str] = frozenset(
    {"hero", "features", "products", "contact", "about", "gallery"}
)
SECTION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
HEX_COLOR_PATTERN = re.compile(r"#(?:[0-9A-Fa-f]{3,4}|[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})")
DEFAULT_THEME_COLOR = "#4F46E5"

ImageMap = dict[str, str]


def is_valid_color(value: Any) -> bool:
    """Return True for a hex colour or an allowed CSS colour name.

    Examples
    --------
    >>> is_valid_color("#4CAF50"), is_valid_color("Blue"), is_valid_color("red}</style>")
    (True, True, False)
    """
    if not isinstance(value, str):
        return False
    value = value.strip()
    return bool(HEX_COLOR_PATTERN.fullmatch(value)) or value.lower() in CSS_NAMED_COLORS


def safe_color(value: Any, default: str) -> str:
    """Return ``value`` stripped when it is a valid colour, else ``default``."""
    return value.strip() if is_valid_color(value) else default


@dataclass(frozen=True)
class GenerationRequest:
    """Immutable input describing the business a website is generated for."""

    business_name: str
    business_type: str = "general"
    location: str = ""
    description: str = ""
    language: str = "en"
    theme_preference: str | None = None

    def __post_init__(self) -> None:
        if not self.business_name or not self.business_name.strip():
            raise ValueError("business_name is required and cannot be empty")
        if not self.business_type or not self.business_type.strip():
            object.__setattr__(self, "business_type", "general")


@dataclass
class SiteMeta:
    title: str
    description: str
    keywords: list[str] = field(default_factory=list)
    theme_color: str = DEFAULT_THEME_COLOR


@dataclass
class NavItem:
    label: str
    section_id: str


@dataclass
class SiteSection:
    """One section of the site; ``image_prompt`` marks it as needing an image."""

    id: str
    type: str
    title: str = ""
    subtitle: str = ""
    content: dict[str, Any] = field(default_factory=dict)
    image_prompt: str | None = None


@dataclass
class SiteSpec:
    """Intermediate representation produced by the SPEC stage.

    Attributes
    ----------
    meta : SiteMeta
        Page title, description, keywords and theme colour.
    navigation : list[NavItem]
        Navigation entries pointing at section ids.
    sections : list[SiteSection]
        Ordered sections; ids are unique within a spec.
    """

    meta: SiteMeta
    navigation: list[NavItem] = field(default_factory=list)
    sections: list[SiteSection] = field(default_factory=list)

    def sections_with_images(self) -> list[SiteSection]:
        return [s for s in self.sections if s.image_prompt]

    def validate(self) -> None:
        """Check the structural invariants of a spec.

        Raises
        ------
        ResponseValidationError
            If there are no sections, a section id is malformed or repeated,
            or a section type is unknown.
        """
        if not self.sections:
            raise ResponseValidationError("Site spec has no sections")
        seen: set[str] = set()
        for section in self.sections:
            if not SECTION_ID_PATTERN.fullmatch(section.id):
                raise ResponseValidationError(
                    f"Invalid section id {section.id!r}",
                    context={"section_id": section.id},
                )
            if section.id in seen:
                raise ResponseValidationError(
                    f"Duplicate section id {section.id!r}",
                    context={"section_id": section.id},
                )
            if section.type not in SECTION_TYPES:
                raise ResponseValidationError(
                    f"Unknown section type {section.type!r}",
                    context={"section_id": section.id},
                )
            seen.add(section.id)

    @classmethod
    def from_dict(cls, data: Any) -> SiteSpec:
        """Build a validated spec from its JSON wire shape.

        Parameters
        ----------
        data : Any
            Decoded JSON, expected to be an object with ``meta``,
            ``navigation`` and ``sections`` keys. Section keys use the wire
            spelling (``imagePrompt``), navigation uses ``sectionId``.

        Returns
        -------
        SiteSpec
            The parsed and validated spec.

        Raises
        ------
        ResponseValidationError
            If any required field is missing or has the wrong type.

        Examples
        --------
        >>> spec = SiteSpec.from_dict({
        ...     "meta": {"title": "T", "description": "D", "keywords": [], "theme_color": "#000"},
        ...     "navigation": [{"label": "Home", "sectionId": "hero"}],
        ...     "sections": [{"id": "hero", "type": "hero", "content": {}}],
        ... })
        >>> spec.sections[0].id
        'hero'
        """
        if not isinstance(data, Mapping):
            raise ResponseValidationError("Site spec must be a JSON object")
        meta_raw = data.get("meta")
        if not isinstance(meta_raw, Mapping):
            raise ResponseValidationError("Site spec is missing 'meta'")
        keywords = meta_raw.get("keywords") or []
        if not isinstance(keywords, list):
            raise ResponseValidationError("meta.keywords must be a list")
        meta = SiteMeta(
            title=_require_str(meta_raw, "title", "meta"),
            description=str(meta_raw.get("description") or ""),
            keywords=[str(k) for k in keywords],
            theme_color=safe_color(meta_raw.get("theme_color"), DEFAULT_THEME_COLOR),
        )

        nav_raw = data.get("navigation") or []
        if not isinstance(nav_raw, list):
            raise ResponseValidationError("navigation must be a list")
        navigation = []
        for item in nav_raw:
            if not isinstance(item, Mapping):
                raise ResponseValidationError("navigation entries must be objects")
            navigation.append(
                NavItem(
                    label=_require_str(item, "label", "navigation"),
                    section_id=_require_str(item, "sectionId", "navigation"),
                )
            )

        sections_raw = data.get("sections")
        if not isinstance(sections_raw, list):
            raise ResponseValidationError("Site spec is missing 'sections'")
        sections = []
        for item in sections_raw:
            if not isinstance(item, Mapping):
                raise ResponseValidationError("sections entries must be objects")
            content = item.get("content") or {}
            if not isinstance(content, Mapping):
                content = {"text": str(content)}
            prompt = item.get("imagePrompt")
            sections.append(
                SiteSection(
                    id=_require_str(item, "id", "section"),
                    type=_require_str(item, "type", "section"),
                    title=str(item.get("title") or ""),
                    subtitle=str(item.get("subtitle") or ""),
                    content=dict(content),
                    image_prompt=str(prompt) if prompt else None,
                )
            )
        spec = cls(meta=meta, navigation=navigation, sections=sections)
        spec.validate()
        return spec

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON wire shape of the spec."""
        return {
            "meta": {
                "title": self.meta.title,
                "description": self.meta.description,
                "keywords": list(self.meta.keywords),
                "theme_color": self.meta.theme_color,
            },
            "navigation": [
                {"label": n.label, "sectionId": n.section_id} for n in self.navigation
            ],
            "sections": [
                {
                    "id": s.id,
                    "type": s.type,
                    "title": s.title,
                    "subtitle": s.subtitle,
                    "content": dict(s.content),
                    **({"imagePrompt": s.image_prompt} if s.image_prompt else {}),
                }
                for s in self.sections
            ],
        }


def _require_str(data: Mapping[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ResponseValidationError(
            f"{where}.{key} must be a non-empty string", context={"field": key}
        )
    return value


@dataclass(frozen=True)
class GeneratedCode:
    """Markup produced by the CODE stage, possibly holding image tokens."""

    html: str
    css: str = ""


@dataclass(frozen=True)
class GenerationOptions:
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    system: str | None = None


@dataclass(frozen=True)
class FallbackLevel:
    """One entry of a fallback chain.

    Attributes
    ----------
    name : str
        Human-readable level name (``claude-3-haiku``, ``rule-based-template``).
    backend_id : str
        Identifier passed to the backend (model id) and used to key the
        level's circuit breaker.
    cost : float
        Nominal cost per call; the terminal level must cost ``0``.
    timeout : float
        Hard per-call timeout in seconds.
    quality_tier : str
        Free-form quality label (``premium``, ``fast``, ``guaranteed``).
    """

    name: str
    backend_id: str
    cost: float
    timeout: float
    quality_tier: str = "standard"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name is required")
        if not self.backend_id:
            raise ValueError("backend_id is required")
        if self.cost < 0:
            raise ValueError(f"cost must be >= 0, got {self.cost}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class LevelMetadata:
    level_used: int
    level_name: str
    backend_id: str
    cost: float
    generation_time_ms: int
    region: str


@dataclass
class GenerationResult(Generic[T]):
    """Canonical result of one successful fallback-level attempt."""

    content: T
    usage: dict[str, Any] = field(default_factory=dict)
    backend_used: str = ""
    metadata: LevelMetadata | None = None


@dataclass
class StageReport:
    stage: str
    level_used: int
    backend_used: str
    cost: float
    generation_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "levelUsed": self.level_used,
            "backendUsed": self.backend_used,
            "cost": self.cost,
            "generationTimeMs": self.generation_time_ms,
        }


@dataclass
class GeneratedAsset:
    """Everything the caller receives for one completed generation run."""

    html: str
    css: str
    images: ImageMap
    config: SiteSpec
    website_url: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the output contract consumed by the HTTP layer."""
        return {
            "html": self.html,
            "css": self.css,
            "images": dict(self.images),
            "config": self.config.to_dict(),
            "websiteUrl": self.website_url,
            "metadata": dict(self.metadata),
        }
