"""Inference backend base class, request type, and factory."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import ScannerConfig


class InferenceError(RuntimeError):
    """The inference service returned an error or an empty response."""


@dataclass
class InferenceRequest:
    stage: str  # detection | primary | effects | flavors
    system: str
    prompt: str
    images: list[bytes] = field(default_factory=list)  # JPEG payloads
    max_tokens: int = 1000
    temperature: float = 0.3


class InferenceBackend(ABC):
    """Abstract request/response call to a multimodal model."""

    @abstractmethod
    async def generate(self, request: InferenceRequest) -> str:
        """Return the model's raw text answer.

        Raises:
            InferenceError: On service errors or empty output.
        """
        ...


def create_backend(config: ScannerConfig) -> InferenceBackend:
    """Create an inference backend based on configuration."""
    backend_name = config.inference.backend

    match backend_name:
        case "claude":
            from .claude import ClaudeInferenceBackend

            return ClaudeInferenceBackend(
                api_key=config.inference.claude.api_key,
                model=config.inference.claude.model,
            )
        case "gemini":
            from .gemini import GeminiInferenceBackend

            return GeminiInferenceBackend(
                api_key=config.inference.gemini.api_key,
                model=config.inference.gemini.model,
            )
        case _:
            raise ValueError(
                f"Unknown inference backend: {backend_name!r}  "
                f"(choose claude or gemini)"
            )
