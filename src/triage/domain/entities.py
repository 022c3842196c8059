"""
Triage Domain Entities
======================

Domain entities for issue classification.

Contains the classification result, the prompt builder for the LLM path,
and the deterministic keyword classifier used whenever the LLM is
unavailable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from src.config import IssueCategory, Priority


@dataclass
class ClassificationResult:
    """
    Result of issue classification.

    `source` records which path produced it: "llm" or "keyword".
    """
    category: str
    subcategory: str
    priority: Priority
    confidence: float  # 0.0 to 1.0
    reasoning: str
    source: str = "keyword"
    model_used: str = "keyword-rules"
    latency_ms: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")
        self.priority = Priority(self.priority)


@dataclass(frozen=True)
class KeywordRule:
    """One row of the ordered fallback table."""
    keywords: Tuple[str, ...]
    category: str
    subcategory: str
    priority: Priority
    confidence: float
    reasoning: str

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


# Order matters: first match wins
KEYWORD_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(
        ("freezer", "refrigerator", "cooling"),
        IssueCategory.FACILITIES.value, "Cold Storage", Priority.HIGH, 0.85,
        "Freezer/refrigeration issues pose product spoilage risk"
    ),
    KeywordRule(
        ("electrical", "light", "power"),
        IssueCategory.FACILITIES.value, "Electrical", Priority.MEDIUM, 0.80,
        "Electrical issues may affect store operations"
    ),
    KeywordRule(
        ("pos", "checkout", "terminal"),
        IssueCategory.IT.value, "POS Systems", Priority.HIGH, 0.90,
        "POS system issues directly impact customer transactions"
    ),
    KeywordRule(
        ("network", "wifi", "internet"),
        IssueCategory.IT.value, "Network", Priority.MEDIUM, 0.75,
        "Network issues affect multiple systems"
    ),
    KeywordRule(
        ("cart", "shelf", "equipment"),
        IssueCategory.EQUIPMENT.value, "General Equipment", Priority.LOW, 0.70,
        "General equipment maintenance issue"
    ),
)

DEFAULT_RULE = KeywordRule(
    (),
    IssueCategory.GENERAL.value, "Maintenance", Priority.MEDIUM, 0.60,
    "General maintenance issue requiring assessment"
)


class KeywordClassifier:
    """
    Deterministic fallback classifier.

    Total by construction: every input maps to a rule, the last resort
    being General/Maintenance.
    """

    def __init__(self, rules: Tuple[KeywordRule, ...] = KEYWORD_RULES):
        self._rules = rules

    def classify(self, description: str) -> ClassificationResult:
        text = (description or "").lower()
        rule = next((r for r in self._rules if r.matches(text)), DEFAULT_RULE)
        return ClassificationResult(
            category=rule.category,
            subcategory=rule.subcategory,
            priority=rule.priority,
            confidence=rule.confidence,
            reasoning=rule.reasoning,
            source="keyword",
        )


class RequiredSkills:
    """Capability tags a provider needs for each category/subcategory."""

    DEFAULT: List[str] = ["General Maintenance"]

    TABLE: Dict[str, List[str]] = {
        "Facilities_Cold Storage": ["Refrigeration", "HVAC"],
        "Facilities_Electrical": ["Electrical"],
        "Facilities_Plumbing": ["Plumbing"],
        "Facilities_HVAC": ["HVAC"],
        "IT_POS Systems": ["POS Systems", "IT Support"],
        "IT_Network": ["Network", "IT Support"],
        "IT_Computers": ["IT Support", "Computer Repair"],
        "Equipment_Shopping Carts": ["General Maintenance"],
        "Equipment_Shelving": ["General Maintenance"],
        "General_Maintenance": ["General Maintenance"],
    }

    @classmethod
    def for_category(cls, category: str, subcategory: str) -> List[str]:
        return list(cls.TABLE.get(f"{category}_{subcategory}", cls.DEFAULT))


class ClassificationPromptBuilder:
    """
    Builds prompts for issue classification.

    All prompt text lives here.
    """

    SYSTEM_PROMPT = """You are an expert maintenance issue classifier for retail stores.

Analyze the issue description and classify it using these categories:

CATEGORIES & SUBCATEGORIES:
1. Facilities: Cold Storage, Electrical, Plumbing, HVAC, Structural
2. IT: POS Systems, Network, Computers, Software
3. Equipment: Shopping Carts, Shelving, Security, Cleaning
4. General: Maintenance, Safety

PRIORITY RULES:
- HIGH: Safety hazards, product spoilage risk, complete system failures, customer-facing critical issues
- MEDIUM: Partial functionality loss, operational impact, non-critical system issues
- LOW: Cosmetic issues, minor inconveniences, scheduled maintenance

Respond ONLY in JSON format:
{
    "category": "Facilities|IT|Equipment|General",
    "subcategory": "specific subcategory name",
    "priority": "HIGH|MEDIUM|LOW",
    "confidence": 0.95,
    "reasoning": "brief explanation for the classification and priority"
}"""

    @classmethod
    def build_prompt(cls, description: str) -> str:
        """Build classification prompt from the issue description."""
        return f"""Issue Description:
{description}

Classify this issue (respond with JSON only):"""

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for classification."""
        return cls.SYSTEM_PROMPT
