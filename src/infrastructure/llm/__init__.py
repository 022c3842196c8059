"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (Z.AI, OpenAI) providing a clean interface for
chat completions used by issue classification.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the triage layer depends on the
ILLMClient abstraction, not on a vendor SDK.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import AsyncOpenAI
from zai import ZaiClient

from src.config import Settings, settings
from src.core import LLMException, ConfigurationException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Only the chat completion call is needed by the classifier.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 500,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""


class ZAIILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous; calls run in a worker thread so the event loop
    keeps serving other tickets while the model answers.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = model or settings.llm_model

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 500,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using the configured GLM model.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {e}", {"operation": operation})

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content or ""

        # Z.AI doesn't always return token usage, so we estimate
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", None) or len(str(messages))
        completion_tokens = getattr(usage, "completion_tokens", None) or len(content)

        return ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation for GPT models.

    Provides async wrapper around OpenAI SDK operations.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            timeout=timeout_seconds or settings.classification_timeout_seconds,
            max_retries=0
        )
        self._model = model or settings.llm_model

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 500,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {e}", {"operation": operation})

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        return ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
            latency_ms=latency_ms
        )


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for testing and local development.

    Returns a fixed classification payload without calling external APIs.
    """

    def __init__(self, payload: Optional[dict] = None):
        self._payload = payload or {
            "category": "General",
            "subcategory": "Maintenance",
            "priority": "MEDIUM",
            "confidence": 0.5,
            "reasoning": "Mock: static classification for local development."
        }

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 500,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Return the configured payload as a fenced JSON reply."""
        content = f"```json\n{json.dumps(self._payload, indent=2)}\n```"
        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=1
        )


def create_llm_client(config: Optional[Settings] = None) -> Optional[ILLMClient]:
    """
    Build the configured LLM client.

    Returns None when the selected provider has no credentials; the
    classifier then runs on keyword heuristics only.
    """
    config = config or settings

    if config.llm_provider == "mock":
        return MockLLMClient()

    try:
        if config.llm_provider == "openai":
            return OpenAILLMClient(
                config.openai_api_key,
                config.llm_model,
                config.classification_timeout_seconds
            )
        return ZAIILLMClient(config.zai_api_key, config.llm_model)
    except ConfigurationException as e:
        logger.warning(
            "LLM client not configured, using keyword classification",
            extra={"llm_provider": config.llm_provider, "error": e.message}
        )
        return None
