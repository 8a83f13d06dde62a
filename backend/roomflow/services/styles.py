from typing import Dict, List, NamedTuple, Optional


class DesignStyle(NamedTuple):
    id: str
    title: str
    description: str


DESIGN_STYLES: tuple[DesignStyle, ...] = (
    DesignStyle("minimal", "Minimal", "Clean, simple, uncluttered"),
    DesignStyle("modern", "Modern", "Sleek, current, innovative"),
    DesignStyle("bohemian", "Bohemian", "Eclectic, relaxed, colorful"),
    DesignStyle("scandinavian", "Scandinavian", "Light, airy, functional"),
    DesignStyle("industrial", "Industrial", "Raw, edgy, utilitarian"),
    DesignStyle("botanical", "Botanical", "Natural, green, tranquil"),
    DesignStyle("farmhouse", "Farmhouse", "Rustic, cozy, traditional"),
    DesignStyle("midcentury", "Mid-Century", "Retro, clean lines, organic"),
)

_STYLES_BY_ID: Dict[str, DesignStyle] = {style.id: style for style in DESIGN_STYLES}

_STYLE_MESSAGES: Dict[str, List[str]] = {
    "minimal": [
        "Creating clean lines...",
        "Refining minimal space...",
        "Perfecting simplicity...",
    ],
    "modern": [
        "Designing contemporary space...",
        "Adding modern elements...",
        "Crafting sleek aesthetics...",
    ],
    "bohemian": [
        "Infusing eclectic vibes...",
        "Adding bohemian layers...",
        "Creating vibrant textures...",
    ],
    "scandinavian": [
        "Balancing light and function...",
        "Creating Nordic simplicity...",
        "Adding hygge elements...",
    ],
    "industrial": [
        "Adding raw textures...",
        "Creating urban atmosphere...",
        "Incorporating industrial elements...",
    ],
    "botanical": [
        "Adding natural elements...",
        "Bringing in greenery...",
        "Creating organic harmony...",
    ],
    "farmhouse": [
        "Creating rustic charm...",
        "Adding cozy farmhouse details...",
        "Blending traditional elements...",
    ],
    "midcentury": [
        "Adding vintage flair...",
        "Creating retro appeal...",
        "Infusing mid-century vibes...",
    ],
}

_FALLBACK_MESSAGES = [
    "Processing image...",
    "Working the magic...",
    "Almost done...",
]


def get_style(style_id: Optional[str]) -> Optional[DesignStyle]:
    if not style_id:
        return None
    return _STYLES_BY_ID.get(style_id)


def is_known_style(style_id: Optional[str]) -> bool:
    return get_style(style_id) is not None


def style_label(style_id: Optional[str]) -> str:
    style = get_style(style_id)
    if style is not None:
        return style.title
    return style_id or "Contemporary"


def loading_messages(style_id: Optional[str], mode: str = "empty") -> List[str]:
    """Status lines shown while a style is being applied."""
    lead = "Removing furniture..." if mode == "empty" else "Decluttering room..."
    if not style_id:
        return [lead, "Processing image...", "Almost done..."]
    return [lead, *_STYLE_MESSAGES.get(style_id, _FALLBACK_MESSAGES)]


def catalogue() -> List[Dict[str, str]]:
    return [style._asdict() for style in DESIGN_STYLES]
