"""Tests for inference backends (mocked API calls)."""

import base64
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from doobiedb.scanner.config import load_config
from doobiedb.scanner.inference import InferenceError, InferenceRequest, create_backend
from doobiedb.scanner.inference.claude import ClaudeInferenceBackend
from doobiedb.scanner.inference.gemini import GeminiInferenceBackend


def _request(**kwargs):
    defaults = dict(stage="primary", system="sys", prompt="Identify this", images=[b"jpeg"])
    defaults.update(kwargs)
    return InferenceRequest(**defaults)


class TestCreateBackend:
    def test_create_claude_backend(self):
        assert isinstance(create_backend(load_config()), ClaudeInferenceBackend)

    def test_create_gemini_backend(self):
        config = load_config()
        config.inference.backend = "gemini"
        assert isinstance(create_backend(config), GeminiInferenceBackend)

    def test_create_unknown_backend(self):
        config = load_config()
        config.inference.backend = "unknown"
        with pytest.raises(ValueError, match="Unknown inference backend"):
            create_backend(config)


class TestClaudeInferenceBackend:
    @pytest.mark.asyncio
    async def test_requires_api_key(self):
        backend = ClaudeInferenceBackend(api_key="")
        with pytest.raises(ValueError, match="API key"):
            await backend.generate(_request())

    @pytest.mark.asyncio
    async def test_generate_mocked(self):
        mock_response = MagicMock()
        mock_response.content = [MagicMock(text='{"name": "OG Kush"}')]

        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        mock_anthropic = MagicMock()
        mock_anthropic.AsyncAnthropic.return_value = mock_client

        with patch.dict(sys.modules, {"anthropic": mock_anthropic}):
            backend = ClaudeInferenceBackend(api_key="test-key", model="test-model")
            text = await backend.generate(_request(temperature=0.7, max_tokens=600))

        assert text == '{"name": "OG Kush"}'
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["system"] == "sys"
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 600
        content = kwargs["messages"][0]["content"]
        assert content[0]["source"]["data"] == base64.standard_b64encode(b"jpeg").decode()
        assert content[-1] == {"type": "text", "text": "Identify this"}

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self):
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(side_effect=ConnectionError("down"))
        mock_anthropic = MagicMock()
        mock_anthropic.AsyncAnthropic.return_value = mock_client

        with patch.dict(sys.modules, {"anthropic": mock_anthropic}):
            backend = ClaudeInferenceBackend(api_key="test-key")
            with pytest.raises(InferenceError, match="down"):
                await backend.generate(_request())

    @pytest.mark.asyncio
    async def test_empty_content(self):
        mock_response = MagicMock()
        mock_response.content = []
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)
        mock_anthropic = MagicMock()
        mock_anthropic.AsyncAnthropic.return_value = mock_client

        with patch.dict(sys.modules, {"anthropic": mock_anthropic}):
            backend = ClaudeInferenceBackend(api_key="test-key")
            with pytest.raises(InferenceError, match="no content"):
                await backend.generate(_request(images=[]))


class TestGeminiInferenceBackend:
    @pytest.mark.asyncio
    async def test_requires_api_key(self):
        backend = GeminiInferenceBackend(api_key="")
        with pytest.raises(ValueError, match="API key"):
            await backend.generate(_request())

    @pytest.mark.asyncio
    async def test_generate_mocked(self):
        mock_response = MagicMock()
        mock_response.text = '[{"name": "Happy"}]'
        mock_model = MagicMock()
        mock_model.generate_content_async = AsyncMock(return_value=mock_response)

        mock_genai = MagicMock()
        mock_genai.GenerativeModel.return_value = mock_model
        mock_google = MagicMock()
        mock_google.generativeai = mock_genai

        with patch.dict(
            sys.modules, {"google": mock_google, "google.generativeai": mock_genai}
        ):
            backend = GeminiInferenceBackend(api_key="test-key", model="gemini-test")
            text = await backend.generate(_request(stage="effects", images=[]))

        assert text == '[{"name": "Happy"}]'
        mock_genai.configure.assert_called_once_with(api_key="test-key")
        mock_genai.GenerativeModel.assert_called_once_with(
            "gemini-test", system_instruction="sys"
        )
        parts = mock_model.generate_content_async.call_args.args[0]
        assert parts == ["Identify this"]
