"""Tests for the Claude client helpers."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.config import settings
from app.infra.claude import (
    ClaudeClient,
    ClaudeClientError,
    normalize_history,
    strip_code_fence,
)


def api_response(text: str) -> MagicMock:
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage.input_tokens = 10
    response.usage.output_tokens = 5
    response.stop_reason = "end_turn"
    return response


class TestNormalizeHistory:
    """Shaping chat history for the Messages API."""

    def test_passthrough(self):
        history = [
            {"role": "user", "content": "Oi"},
            {"role": "assistant", "content": "Olá!"},
            {"role": "user", "content": "Tudo bem?"},
        ]

        assert normalize_history(history) == history

    def test_leading_assistant_dropped(self):
        history = [
            {"role": "assistant", "content": "Lembrete: consulta amanhã"},
            {"role": "user", "content": "Obrigado"},
        ]

        assert normalize_history(history) == [{"role": "user", "content": "Obrigado"}]

    def test_consecutive_turns_merged(self):
        history = [
            {"role": "user", "content": "Oi"},
            {"role": "user", "content": "Quero agendar"},
        ]

        assert normalize_history(history) == [{"role": "user", "content": "Oi\nQuero agendar"}]

    def test_empty_and_unknown_dropped(self):
        history = [
            {"role": "system", "content": "x"},
            {"role": "user", "content": "  "},
            {"role": "user", "content": "Oi"},
        ]

        assert normalize_history(history) == [{"role": "user", "content": "Oi"}]

    def test_input_not_mutated(self):
        history = [{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]

        normalize_history(history)

        assert history[0]["content"] == "a"


class TestStripCodeFence:

    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'


class TestClaudeClient:
    """Chat calls against a mocked Anthropic client."""

    @pytest.fixture
    def client(self):
        client = ClaudeClient(api_key="test-key")
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(return_value=api_response("Olá"))
        return client

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "anthropic_api_key", "")

        with pytest.raises(ValueError):
            ClaudeClient()

    @pytest.mark.asyncio
    async def test_chat(self, client):
        response = await client.chat(
            messages=[{"role": "user", "content": "Oi"}],
            system_prompt="Seja breve",
            model="model-a",
        )

        assert response.content == "Olá"
        assert response.model == "model-a"
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Seja breve"
        assert kwargs["messages"] == [{"role": "user", "content": "Oi"}]

    @pytest.mark.asyncio
    async def test_no_user_turn(self, client):
        with pytest.raises(ClaudeClientError):
            await client.chat(messages=[{"role": "assistant", "content": "Olá"}])

        client._client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_to_second_model(self, client):
        client._client.messages.create.side_effect = [RuntimeError("overloaded"), api_response("Oi!")]

        response = await client.generate("Oi", model="model-a")

        assert response.content == "Oi!"
        assert response.model == settings.claude_fallback_model

    @pytest.mark.asyncio
    async def test_no_fallback_raises(self, client):
        client._client.messages.create.side_effect = RuntimeError("overloaded")

        with pytest.raises(ClaudeClientError):
            await client.generate("Oi", model="model-a", use_fallback_on_error=False)
