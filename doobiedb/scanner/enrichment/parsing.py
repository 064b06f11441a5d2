"""Parsing and validation of model responses.

Model output is treated as untrusted: everything is clamped, restricted to
a closed set, truncated or defaulted before later stages see it.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from ..models import CATEGORIES, ProfileItem, Terpene
from ..profiles import clamp_intensity, lookup

DEFAULT_NAME = "Unknown Strain"
DEFAULT_CATEGORY = "Hybrid"
DEFAULT_CBD = 1.0
DEFAULT_CONFIDENCE = 85.0
DEFAULT_EFFECTS = ["Relaxed", "Happy"]
DEFAULT_FLAVORS = ["Earthy"]
DEFAULT_MEDICAL_USES = ["General Wellness"]
DEFAULT_DESCRIPTION = "Strain profile generated from AI analysis."

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


@dataclass
class PrimaryFields:
    """Fully-defaulted result of the primary extraction stage."""

    name: str
    category: str = DEFAULT_CATEGORY
    cbd: float = DEFAULT_CBD
    confidence: float = DEFAULT_CONFIDENCE
    effects: list[str] = field(default_factory=lambda: list(DEFAULT_EFFECTS))
    flavors: list[str] = field(default_factory=lambda: list(DEFAULT_FLAVORS))
    terpenes: list[Terpene] = field(default_factory=list)
    medical_uses: list[str] = field(
        default_factory=lambda: list(DEFAULT_MEDICAL_USES)
    )
    description: str = DEFAULT_DESCRIPTION


def strip_wrappers(text: str, opener: str = "{", closer: str = "}") -> str:
    """Remove markdown fences and any prose around the JSON payload."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()

    start = cleaned.find(opener)
    end = cleaned.rfind(closer)
    if start != -1 and end > start:
        cleaned = cleaned[start : end + 1]
    return cleaned


def parse_object(text: str) -> dict:
    data = json.loads(strip_wrappers(text, "{", "}"))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_array(text: str) -> list:
    data = json.loads(strip_wrappers(text, "[", "]"))
    if isinstance(data, dict):
        # Some models wrap the array: {"effects": [...]}
        lists = [v for v in data.values() if isinstance(v, list)]
        if len(lists) == 1:
            data = lists[0]
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    return data


def _as_number(value) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().rstrip("%"))
    except ValueError:
        return None


def _clamp(value, low: float, high: float, default: float) -> float:
    number = _as_number(value)
    if number is None or number != number:  # NaN
        return default
    return min(max(number, low), high)


def _string_list(value, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    names: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name")
        if isinstance(item, str) and item.strip():
            names.append(item.strip())
    return names[:limit]


def _category(value) -> str:
    if isinstance(value, str):
        for category in CATEGORIES:
            if value.strip().lower() == category.lower():
                return category
    return DEFAULT_CATEGORY


def _terpenes(value, limit: int) -> list[Terpene]:
    if not isinstance(value, list):
        return []
    terpenes: list[Terpene] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        effects = item.get("effects")
        terpenes.append(
            Terpene(
                name=name.strip(),
                percentage=_clamp(item.get("percentage"), 0.0, 100.0, 0.0),
                effects=effects if isinstance(effects, str) else "",
            )
        )
    return terpenes[:limit]


def validate_primary(
    data: dict,
    fallback_name: str = "",
    *,
    max_effects: int = 8,
    max_flavors: int = 6,
    max_medical_uses: int = 6,
    max_terpenes: int = 6,
) -> PrimaryFields:
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        name = fallback_name.strip() or DEFAULT_NAME

    effects = _string_list(data.get("effects") or data.get("effectProfiles"), max_effects)
    flavors = _string_list(data.get("flavors") or data.get("flavorProfiles"), max_flavors)
    medical = _string_list(data.get("medicalUses") or data.get("medical_uses"), max_medical_uses)

    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        description = DEFAULT_DESCRIPTION

    return PrimaryFields(
        name=name.strip(),
        category=_category(data.get("type") or data.get("category")),
        cbd=_clamp(data.get("cbd"), 0.0, 100.0, DEFAULT_CBD),
        confidence=_clamp(data.get("confidence"), 0.0, 100.0, DEFAULT_CONFIDENCE),
        effects=effects or list(DEFAULT_EFFECTS),
        flavors=flavors or list(DEFAULT_FLAVORS),
        terpenes=_terpenes(data.get("terpenes"), max_terpenes),
        medical_uses=medical or list(DEFAULT_MEDICAL_USES),
        description=description.strip(),
    )


def parse_detection(text: str) -> tuple[str, float]:
    """Parse a name-only detection answer into ``(name, confidence)``."""
    data = parse_object(text)
    name = data.get("name")
    name = name.strip() if isinstance(name, str) else ""
    return name, _clamp(data.get("confidence"), 0.0, 100.0, 0.0)


def parse_profiles(text: str, kind: str, limit: int) -> list[ProfileItem]:
    """Parse a profile array, backfilling emoji/color from the lookup table.

    Raises:
        ValueError: If no usable item remains.
    """
    items: list[ProfileItem] = []
    for raw in parse_array(text):
        if isinstance(raw, str):
            raw = {"name": raw}
        if not isinstance(raw, dict):
            continue
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        name = name.strip()
        emoji, color = lookup(kind, name)
        given_emoji = raw.get("emoji")
        given_color = raw.get("color")
        items.append(
            ProfileItem(
                name=name,
                intensity=clamp_intensity(raw.get("intensity")),
                emoji=given_emoji if isinstance(given_emoji, str) and given_emoji.strip() else emoji,
                color=given_color if isinstance(given_color, str) and _HEX_COLOR.match(given_color) else color,
            )
        )
    if not items:
        raise ValueError(f"no usable {kind} in response")
    return items[:limit]
