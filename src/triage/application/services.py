"""
Triage Application Services
============================

Issue classification: LLM first, keyword rules on any failure.
"""

import asyncio
import json
import re
import time
from typing import Optional

from pydantic import ValidationError

from src.config import settings
from src.core import LLMException, ValidationException
from src.infrastructure.llm import ILLMClient
from src.shared.infrastructure.logging import get_logger
from src.triage.application.dto import ClassificationPayload
from src.triage.domain import (
    ClassificationResult,
    ClassificationPromptBuilder,
    KeywordClassifier,
)

logger = get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json(content: str) -> dict:
    """
    Pull the JSON object out of a model reply.

    Accepts fenced ```json blocks or a bare object embedded in prose.

    Raises:
        LLMException: If no JSON object can be decoded
    """
    text = content or ""
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0]
    elif "```" in text:
        text = text.split("```", 1)[1].split("```", 1)[0]

    match = _JSON_OBJECT.search(text)
    if not match:
        raise LLMException("No JSON object found in classification response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise LLMException(f"Failed to parse classification response: {e}")

    if not isinstance(data, dict):
        raise LLMException("Classification response is not a JSON object")
    return data


class ClassificationService:
    """
    Classifies free-text issue descriptions.

    `classify` never raises for runtime conditions: a missing client,
    timeout, provider error or malformed reply all degrade to the
    keyword classifier.
    """

    def __init__(
        self,
        llm_client: Optional[ILLMClient] = None,
        fallback: Optional[KeywordClassifier] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._llm = llm_client
        self._fallback = fallback or KeywordClassifier()
        self._timeout = timeout_seconds or settings.classification_timeout_seconds

    @property
    def has_llm(self) -> bool:
        return self._llm is not None

    async def classify(self, description: str) -> ClassificationResult:
        """
        Classify an issue description.

        Raises:
            ValidationException: If the description is empty
        """
        if not description or not description.strip():
            raise ValidationException("Issue description must not be empty")

        if self._llm is None:
            logger.debug("No LLM client configured, using keyword classification")
            return self._fallback.classify(description)

        try:
            return await asyncio.wait_for(
                self._classify_with_llm(description),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Classification timed out, falling back to keyword rules",
                extra={"timeout_seconds": self._timeout}
            )
        except (LLMException, ValidationError, ValueError) as e:
            logger.warning(
                "Classification failed, falling back to keyword rules",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
        except Exception as e:
            logger.error(
                "Unexpected classification error, falling back to keyword rules",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True
            )

        return self._fallback.classify(description)

    async def _classify_with_llm(self, description: str) -> ClassificationResult:
        start_time = time.perf_counter()

        messages = [
            {"role": "system", "content": ClassificationPromptBuilder.get_system_prompt()},
            {"role": "user", "content": ClassificationPromptBuilder.build_prompt(description)}
        ]

        response = await self._llm.chat_completion(
            messages=messages,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            operation="classification"
        )

        payload = ClassificationPayload.model_validate(extract_json(response.content))
        latency_ms = int((time.perf_counter() - start_time) * 1000)

        logger.info(
            "Issue classified by LLM",
            extra={
                "category": payload.category,
                "subcategory": payload.subcategory,
                "priority": payload.priority,
                "confidence": payload.confidence,
                "model": response.model,
                "latency_ms": latency_ms
            }
        )

        return ClassificationResult(
            category=payload.category,
            subcategory=payload.subcategory,
            priority=payload.priority,
            confidence=payload.confidence,
            reasoning=payload.reasoning,
            source="llm",
            model_used=response.model,
            latency_ms=latency_ms,
        )
