"""Pin the THC figure stated in free text to the canonical value."""

from __future__ import annotations

import re

_NUMBER = r"\d+(?:\.\d+)?"
_VALUE = rf"(?:{_NUMBER}\s*%?\s*(?:-|–|to)\s*)?{_NUMBER}"

# "THC of 18%", "potency near 20 percent", "18% THC", "18-22% THC"
_THC_FIGURE = re.compile(
    rf"(?P<lead>\b(?:THC|potency)\b[^.!?%\d]{{0,40}}?)(?P<value>{_VALUE})(?P<unit>\s*(?:%|percent\b))"
    rf"|(?P<trail_value>{_VALUE})(?P<trail>\s*(?:%|percent\b)\s*(?:of\s+)?THC\b)",
    re.IGNORECASE,
)


def potency_sentence(thc: float) -> str:
    return f"THC content is {thc:g}%."


def rewrite_potency_sentences(description: str, thc: float) -> str:
    """Replace every numeric THC figure in the text with the canonical value.

    Only the figure itself is rewritten, so the rest of each sentence and the
    original whitespace survive. If no figure is found the canonical sentence
    is prefixed.
    """
    canonical = potency_sentence(thc)
    text = description.strip()
    if not text:
        return canonical

    value = f"{thc:g}"

    def _pin(match: re.Match) -> str:
        if match["value"] is not None:
            return match["lead"] + value + match["unit"]
        return value + match["trail"]

    rewritten, count = _THC_FIGURE.subn(_pin, text)
    if count == 0:
        return f"{canonical} {text}"
    return rewritten
