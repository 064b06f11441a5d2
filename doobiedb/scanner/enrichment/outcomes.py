"""Per-stage outcome of an inference call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass
class Parsed:
    value: Any


@dataclass
class ParseFailure:
    raw: str
    error: str


@dataclass
class TimedOut:
    seconds: float


@dataclass
class InferenceFailed:
    error: str


StageOutcome = Union[Parsed, ParseFailure, TimedOut, InferenceFailed]


def describe(outcome: StageOutcome) -> str:
    """One-line reason for logs and failure results."""
    match outcome:
        case Parsed():
            return "ok"
        case ParseFailure(error=error):
            return f"unparseable response: {error}"
        case TimedOut(seconds=seconds):
            return f"timed out after {seconds:g}s"
        case InferenceFailed(error=error):
            return f"inference failed: {error}"
    return repr(outcome)
