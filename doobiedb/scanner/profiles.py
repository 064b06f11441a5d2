"""Static presentation lookup for effect and flavor profile items."""

from __future__ import annotations

from .models import ProfileItem

# name → (emoji, color)
SUPPORTED_EFFECTS: dict[str, tuple[str, str]] = {
    "Relaxed": ("😌", "#5B21B6"),
    "Happy": ("😊", "#F59E0B"),
    "Euphoric": ("🤩", "#D946EF"),
    "Uplifted": ("⬆️", "#10B981"),
    "Creative": ("🎨", "#8B5CF6"),
    "Focused": ("🎯", "#3B82F6"),
    "Sleepy": ("😴", "#374151"),
    "Hungry": ("🍽️", "#EF4444"),
}

SUPPORTED_FLAVORS: dict[str, tuple[str, str]] = {
    "Earthy": ("🌍", "#A16207"),
    "Sweet": ("🍯", "#FBBF24"),
    "Citrus": ("🍋", "#FACC15"),
    "Pine": ("🌲", "#15803D"),
    "Berry": ("🫐", "#6D28D9"),
    "Diesel": ("⛽", "#475569"),
    "Skunk": ("🦨", "#44403C"),
    "Floral": ("🌸", "#DB2777"),
}

DEFAULT_EFFECT: tuple[str, str] = ("✨", "#6B7280")
DEFAULT_FLAVOR: tuple[str, str] = ("🌿", "#6B7280")

SYNTHESIZED_INTENSITY = 3

_TABLES: dict[str, tuple[dict[str, tuple[str, str]], tuple[str, str]]] = {
    "effects": (SUPPORTED_EFFECTS, DEFAULT_EFFECT),
    "flavors": (SUPPORTED_FLAVORS, DEFAULT_FLAVOR),
}


def lookup(kind: str, name: str) -> tuple[str, str]:
    """Return ``(emoji, color)`` for a profile name, case-insensitively."""
    table, default = _TABLES[kind]
    if name in table:
        return table[name]
    for key, value in table.items():
        if key.lower() == name.strip().lower():
            return value
    return default


def clamp_intensity(value) -> int:
    try:
        intensity = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return SYNTHESIZED_INTENSITY
    return min(max(intensity, 1), 5)


def synthesize(kind: str, names: list[str]) -> list[ProfileItem]:
    """Build profile items from a flat name list at mid-level intensity."""
    items: list[ProfileItem] = []
    for name in names:
        emoji, color = lookup(kind, name)
        items.append(
            ProfileItem(
                name=name,
                intensity=SYNTHESIZED_INTENSITY,
                emoji=emoji,
                color=color,
            )
        )
    return items
