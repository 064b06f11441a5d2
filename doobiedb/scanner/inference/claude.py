"""Claude API inference backend."""

from __future__ import annotations

import base64

from . import InferenceBackend, InferenceError, InferenceRequest


class ClaudeInferenceBackend(InferenceBackend):
    """Run pipeline stages against Claude's messages API."""

    def __init__(self, api_key: str = "", model: str = "claude-sonnet-4-5-20250929") -> None:
        self._api_key = api_key
        self._model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise ImportError(
                    "anthropic SDK is required: pip install anthropic"
                ) from None
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def generate(self, request: InferenceRequest) -> str:
        if not self._api_key:
            raise ValueError(
                "Anthropic API key is not set. "
                "Check the config file or the ANTHROPIC_API_KEY environment variable."
            )

        content: list[dict] = []
        for data in request.images:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/jpeg",
                        "data": base64.standard_b64encode(data).decode(),
                    },
                }
            )
        content.append({"type": "text", "text": request.prompt})

        client = self._get_client()
        try:
            response = await client.messages.create(
                model=self._model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                system=request.system,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            raise InferenceError(f"Claude request failed ({request.stage}): {e}") from e

        if not response.content:
            raise InferenceError(f"Claude returned no content ({request.stage})")
        return response.content[0].text
