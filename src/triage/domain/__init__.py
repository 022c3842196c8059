"""
Triage Domain Layer
===================

Pure Python classification objects:
- ClassificationResult: outcome of classifying one issue description
- KeywordClassifier: deterministic fallback rules
- RequiredSkills: category -> capability tags
- ClassificationPromptBuilder: LLM prompt text
"""

from src.triage.domain.entities import (
    ClassificationResult,
    KeywordRule,
    KeywordClassifier,
    KEYWORD_RULES,
    DEFAULT_RULE,
    RequiredSkills,
    ClassificationPromptBuilder,
)

__all__ = [
    "ClassificationResult",
    "KeywordRule",
    "KeywordClassifier",
    "KEYWORD_RULES",
    "DEFAULT_RULE",
    "RequiredSkills",
    "ClassificationPromptBuilder",
]
