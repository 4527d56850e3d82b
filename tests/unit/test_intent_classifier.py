"""Tests for LLM intent classification."""

import pytest
from unittest.mock import AsyncMock
from dataclasses import dataclass

from app.core.intelligence.intent.types import Intent, IntentResult, parse_intent
from app.core.intelligence.intent.classifier import IntentClassifier


@dataclass
class MockClaudeResponse:
    """Mock Claude response."""
    content: str
    model: str = "claude-3-5-haiku-20241022"
    input_tokens: int = 100
    output_tokens: int = 50
    stop_reason: str = "end_turn"
    latency_ms: float = 50.0


class TestIntentClassifier:
    """Test LLM-based intent classifier."""

    @pytest.fixture
    def mock_claude_client(self):
        """Mock Claude client."""
        client = AsyncMock()
        return client

    @pytest.fixture
    def classifier(self, mock_claude_client):
        """Create classifier with mock client."""
        return IntentClassifier(claude_client=mock_claude_client)

    def _mock_response(self, mock_client, json_response: str):
        """Helper to mock Claude response."""
        mock_client.generate.return_value = MockClaudeResponse(content=json_response)

    @pytest.mark.asyncio
    async def test_classify_book(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "book", "confidence": 0.92}')

        result = await classifier.classify("Quero agendar amanhã às 14h")

        assert result.intent == Intent.BOOK
        assert result.confidence == pytest.approx(0.92)
        assert result.is_booking_related

    @pytest.mark.asyncio
    async def test_classify_cancel(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "cancel", "confidence": 0.85}')

        result = await classifier.classify("Preciso cancelar meu horário")

        assert result.intent == Intent.CANCEL

    @pytest.mark.asyncio
    async def test_classify_inform(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "inform", "confidence": 0.8}')

        result = await classifier.classify("Quanto custa a consulta?")

        assert result.intent == Intent.INFORM
        assert not result.is_booking_related

    @pytest.mark.asyncio
    async def test_code_fenced_json(self, classifier, mock_claude_client):
        self._mock_response(
            mock_claude_client,
            '```json\n{"intent": "reschedule", "confidence": 0.77}\n```',
        )

        result = await classifier.classify("Dá pra mudar meu horário?")

        assert result.intent == Intent.RESCHEDULE

    @pytest.mark.asyncio
    async def test_portuguese_label(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "agendar", "confidence": 0.9}')

        result = await classifier.classify("marcar")

        assert result.intent == Intent.BOOK

    @pytest.mark.asyncio
    async def test_unknown_label_is_other(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "complaint", "confidence": 0.9}')

        result = await classifier.classify("Péssimo atendimento")

        assert result.intent == Intent.OTHER

    @pytest.mark.asyncio
    async def test_invalid_json_is_other(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, "I think they want to book")

        result = await classifier.classify("Oi")

        assert result.intent == Intent.OTHER
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_api_error_is_other(self, classifier, mock_claude_client):
        mock_claude_client.generate.side_effect = Exception("API Error")

        result = await classifier.classify("Quero agendar")

        assert result.intent == Intent.OTHER
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_empty_message_skips_model(self, classifier, mock_claude_client):
        result = await classifier.classify("   ")

        assert result.intent == Intent.OTHER
        mock_claude_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_in_prompt(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "other", "confidence": 0.5}')

        await classifier.classify("Bom dia!")

        prompt = mock_claude_client.generate.call_args.kwargs["prompt"]
        assert '"Bom dia!"' in prompt


class TestIntentResult:
    """Test IntentResult dataclass."""

    def test_confidence_clamped(self):
        assert IntentResult(intent=Intent.BOOK, confidence=1.4).confidence == 1.0
        assert IntentResult(intent=Intent.BOOK, confidence=-0.2).confidence == 0.0

    def test_clears_is_strict(self):
        result = IntentResult(intent=Intent.BOOK, confidence=0.7)

        assert not result.clears(0.7)
        assert result.clears(0.69)

    def test_to_dict(self):
        result = IntentResult(intent=Intent.CANCEL, confidence=0.8)

        assert result.to_dict()["intent"] == "cancel"

    def test_parse_intent(self):
        assert parse_intent(" Cancelar ") == Intent.CANCEL
        assert parse_intent(None) == Intent.OTHER
