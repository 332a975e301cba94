"""Rule-based site content used when no model is available.

Everything here is pure and deterministic: the same request always yields
the same spec. This is the content behind the terminal ``rule-based-template``
level and the offline pipeline path, so it must never raise for a valid
``GenerationRequest``.
"""

from __future__ import annotations

from sitegen.config import BUSINESS_COLORS, BUSINESS_KEYWORDS
from sitegen.models import (
    GenerationRequest,
    NavItem,
    SiteMeta,
    SiteSection,
    SiteSpec,
    safe_color,
)

_FEATURES: dict[str, list[tuple[str, str]]] = {
    "grocery": [
        ("Fresh every morning", "Fruit and vegetables sourced from local farms."),
        ("Home delivery", "Order before noon and get it the **same day**."),
        ("Fair prices", "Everyday essentials without the markup."),
    ],
    "restaurant": [
        ("Seasonal menu", "Dishes built around what is fresh this week."),
        ("Private dining", "Space for family dinners and small events."),
        ("Takeaway", "Call ahead and pick up your order hot."),
    ],
    "clinic": [
        ("Experienced staff", "Qualified doctors and nurses you can trust."),
        ("Short waiting times", "Book online and be seen on time."),
        ("Follow-up care", "We stay with you after the first visit."),
    ],
    "fashion": [
        ("New arrivals", "Fresh collections every season."),
        ("Tailoring", "Alterations so every piece fits right."),
        ("Easy returns", "Changed your mind? Bring it back within 14 days."),
    ],
    "electronics": [
        ("Latest devices", "Phones, laptops and accessories in stock."),
        ("Repairs", "Screen, battery and board repairs done in-house."),
        ("Warranty support", "We handle the paperwork for you."),
    ],
    "general": [
        ("Quality service", "We take pride in doing things properly."),
        ("Friendly team", "Real people who know their work."),
        ("Local and reliable", "Serving our neighbourhood every day."),
    ],
}


def detect_business_type(text: str) -> str:
    """Return the business category whose keywords appear in ``text``.

    Examples
    --------
    >>> detect_business_type("Fresh vegetable shop near the station")
    'grocery'
    >>> detect_business_type("Consulting")
    'general'
    """
    lowered = (text or "").lower()
    for business_type, keywords in BUSINESS_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return business_type
    return "general"


def resolve_business_type(request: GenerationRequest) -> str:
    """Use the declared type when it is known, otherwise detect it from the text."""
    declared = request.business_type.strip().lower()
    if declared in BUSINESS_COLORS and declared != "general":
        return declared
    return detect_business_type(
        " ".join([request.business_type, request.business_name, request.description])
    )


def theme_colors(business_type: str) -> tuple[str, str]:
    return BUSINESS_COLORS.get(business_type, BUSINESS_COLORS["general"])


def build_template_spec(request: GenerationRequest) -> SiteSpec:
    """Build a complete, valid site spec from the request alone."""
    business_type = resolve_business_type(request)
    primary, _ = theme_colors(business_type)
    theme_color = safe_color(request.theme_preference, primary)
    name = request.business_name.strip()
    where = f" in {request.location}" if request.location else ""
    label = business_type if business_type != "general" else "business"
    description = request.description or f"{name} is a local {label}{where}."

    sections = [
        SiteSection(
            id="hero",
            type="hero",
            title=f"Welcome to {name}",
            subtitle=f"Your trusted {label}{where}.",
            content={"cta": "Get in touch"},
            image_prompt=f"Storefront of a {label}{where}, bright daylight, inviting",
        ),
        SiteSection(
            id="features",
            type="features",
            title="What we offer",
            content={
                "items": [
                    {"title": t, "text": body}
                    for t, body in _FEATURES.get(business_type, _FEATURES["general"])
                ]
            },
        ),
        SiteSection(
            id="about",
            type="about",
            title=f"About {name}",
            content={"text": description},
            image_prompt=f"Friendly team working in a {label}, warm natural light",
        ),
        SiteSection(
            id="contact",
            type="contact",
            title="Contact us",
            subtitle="We would love to hear from you.",
            content={"address": request.location or "", "text": "Drop by or send us a message."},
        ),
    ]
    return SiteSpec(
        meta=SiteMeta(
            title=name,
            description=description,
            keywords=[k for k in (label, name, request.location) if k],
            theme_color=theme_color,
        ),
        navigation=[
            NavItem(label="Home", section_id="hero"),
            NavItem(label="Services", section_id="features"),
            NavItem(label="About", section_id="about"),
            NavItem(label="Contact", section_id="contact"),
        ],
        sections=sections,
    )
