"""Gemini API inference backend."""

from __future__ import annotations

from . import InferenceBackend, InferenceError, InferenceRequest


class GeminiInferenceBackend(InferenceBackend):
    """Run pipeline stages against Google Gemini."""

    def __init__(self, api_key: str = "", model: str = "gemini-2.0-flash") -> None:
        self._api_key = api_key
        self._model = model

    async def generate(self, request: InferenceRequest) -> str:
        if not self._api_key:
            raise ValueError(
                "Gemini API key is not set. "
                "Check the config file or the GEMINI_API_KEY environment variable."
            )

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError(
                "google-generativeai SDK is required: pip install google-generativeai"
            ) from None

        genai.configure(api_key=self._api_key)
        model = genai.GenerativeModel(self._model, system_instruction=request.system)

        parts: list = []
        for data in request.images:
            parts.append({"mime_type": "image/jpeg", "data": data})
        parts.append(request.prompt)

        try:
            response = await model.generate_content_async(
                parts,
                generation_config={
                    "max_output_tokens": request.max_tokens,
                    "temperature": request.temperature,
                },
            )
            text = response.text
        except Exception as e:
            raise InferenceError(f"Gemini request failed ({request.stage}): {e}") from e

        if not text:
            raise InferenceError(f"Gemini returned no text ({request.stage})")
        return text
