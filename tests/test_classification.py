import asyncio
from unittest.mock import AsyncMock

import pytest

from src.config import Priority
from src.core import LLMException, ValidationException
from src.infrastructure.llm import ChatCompletionResult, ILLMClient, MockLLMClient
from src.triage.application import ClassificationService, extract_json
from src.triage.domain import KeywordClassifier, RequiredSkills


def _llm_returning(content):
    client = AsyncMock(spec=ILLMClient)
    client.chat_completion.return_value = ChatCompletionResult(
        content=content, model="test-model", prompt_tokens=10, completion_tokens=10, latency_ms=5
    )
    return client


class TestKeywordClassifier:
    def test_freezer_is_high_priority_cold_storage(self):
        result = KeywordClassifier().classify("Walk-in FREEZER is leaking water")
        assert (result.category, result.subcategory, result.priority) == (
            "Facilities", "Cold Storage", Priority.HIGH
        )
        assert result.confidence == 0.85
        assert result.source == "keyword"

    def test_checkout_terminal_is_pos(self):
        result = KeywordClassifier().classify("Checkout terminal 3 keeps rebooting")
        assert result.subcategory == "POS Systems"
        assert result.priority == Priority.HIGH

    def test_first_matching_rule_wins(self):
        # mentions both cooling and network; cold storage is listed first
        result = KeywordClassifier().classify("Cooling unit lost its network link")
        assert result.subcategory == "Cold Storage"

    def test_unmatched_text_defaults_to_general_maintenance(self):
        result = KeywordClassifier().classify("Door hinge squeaks")
        assert (result.category, result.subcategory, result.priority) == (
            "General", "Maintenance", Priority.MEDIUM
        )
        assert result.confidence == 0.60


class TestRequiredSkills:
    def test_known_category(self):
        assert "Refrigeration" in RequiredSkills.for_category("Facilities", "Cold Storage")

    def test_unknown_category_falls_back_to_general(self):
        assert RequiredSkills.for_category("Space", "Rockets") == ["General Maintenance"]


class TestExtractJson:
    def test_fenced_block(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_object_inside_prose(self):
        assert extract_json('Here you go: {"priority": "LOW"} hope that helps') == {"priority": "LOW"}

    def test_no_object_raises(self):
        with pytest.raises(LLMException):
            extract_json("I cannot classify this")


class TestClassificationService:
    def test_empty_description_is_rejected(self):
        service = ClassificationService()
        with pytest.raises(ValidationException):
            asyncio.run(service.classify("   "))

    def test_without_llm_uses_keywords(self):
        service = ClassificationService()
        result = asyncio.run(service.classify("Aisle 4 lights flickering"))
        assert not service.has_llm
        assert result.subcategory == "Electrical"
        assert result.source == "keyword"

    def test_llm_result_is_used(self):
        service = ClassificationService(MockLLMClient({
            "category": "IT",
            "subcategory": "Network",
            "priority": "low",
            "confidence": 0.7,
            "reasoning": "Guest wifi only",
        }))
        result = asyncio.run(service.classify("Guest wifi is slow"))
        assert result.source == "llm"
        assert result.model_used == "mock-model"
        assert result.priority == Priority.LOW
        assert result.subcategory == "Network"

    def test_llm_error_falls_back_to_keywords(self):
        client = AsyncMock(spec=ILLMClient)
        client.chat_completion.side_effect = LLMException("rate limited")
        result = asyncio.run(ClassificationService(client).classify("Freezer alarm going off"))
        assert result.source == "keyword"
        assert result.subcategory == "Cold Storage"

    def test_unexpected_error_falls_back_to_keywords(self):
        client = AsyncMock(spec=ILLMClient)
        client.chat_completion.side_effect = RuntimeError("socket closed")
        result = asyncio.run(ClassificationService(client).classify("Shelf collapsed"))
        assert result.source == "keyword"
        assert result.category == "Equipment"

    def test_malformed_reply_falls_back(self):
        service = ClassificationService(_llm_returning('{"category": "Plumbing", "priority": "HIGH"}'))
        result = asyncio.run(service.classify("Checkout scanner dead"))
        assert result.source == "keyword"
        assert result.subcategory == "POS Systems"

    def test_out_of_range_confidence_falls_back(self):
        service = ClassificationService(_llm_returning(
            '{"category": "IT", "subcategory": "Network", "priority": "HIGH", "confidence": 3}'
        ))
        result = asyncio.run(service.classify("Internet down"))
        assert result.source == "keyword"

    def test_slow_llm_times_out_to_keywords(self):
        class SlowClient(MockLLMClient):
            async def chat_completion(self, *args, **kwargs):
                await asyncio.sleep(1)
                return await super().chat_completion(*args, **kwargs)

        service = ClassificationService(SlowClient(), timeout_seconds=0.01)
        result = asyncio.run(service.classify("Refrigerator warm"))
        assert result.source == "keyword"
        assert result.subcategory == "Cold Storage"
