"""
Dispatch Value Objects
======================

Immutable scoring objects used by availability resolution and routing.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from src.config import Priority
from src.dispatch.domain.entities import Assignment, GeoPoint, Provider

EARTH_RADIUS_KM = 6371.0
UNKNOWN_DISTANCE_KM = 999999.0
NEUTRAL_SKILL_SCORE = 0.5
DEFAULT_PERFORMANCE_SCORE = 0.5


def haversine_km(origin: Optional[GeoPoint], target: Optional[GeoPoint]) -> float:
    """
    Great-circle distance in kilometers.

    Missing or invalid coordinates yield UNKNOWN_DISTANCE_KM so one bad
    provider record only ranks that provider last.
    """
    if origin is None or target is None:
        return UNKNOWN_DISTANCE_KM

    try:
        d_lat = math.radians(target.latitude - origin.latitude)
        d_lon = math.radians(target.longitude - origin.longitude)
        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(math.radians(origin.latitude))
            * math.cos(math.radians(target.latitude))
            * math.sin(d_lon / 2) ** 2
        )
        distance = EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    except (TypeError, ValueError):
        return UNKNOWN_DISTANCE_KM

    return UNKNOWN_DISTANCE_KM if math.isnan(distance) else distance


def skill_matches(provider_skill: str, required_skill: str) -> bool:
    """Case-insensitive containment in either direction."""
    provider_skill = provider_skill.strip().lower()
    required_skill = required_skill.strip().lower()
    if not provider_skill or not required_skill:
        return False
    return required_skill in provider_skill or provider_skill in required_skill


def skill_match_score(provider_skills: Sequence[str], required_skills: Sequence[str]) -> float:
    """Fraction of required skills the provider covers (0.5 when none are required)."""
    if not required_skills:
        return NEUTRAL_SKILL_SCORE
    matched = sum(
        1 for required in required_skills
        if any(skill_matches(skill, required) for skill in provider_skills)
    )
    return matched / len(required_skills)


@dataclass(frozen=True)
class WeightedSkill:
    skill: str
    weight: float


class RoutingSkillTable:
    """Weighted capability table used by the routing engine."""

    DEFAULT: Tuple[WeightedSkill, ...] = (WeightedSkill("General Maintenance", 0.9),)

    TABLE: Dict[str, Tuple[WeightedSkill, ...]] = {
        "Facilities_Cold Storage": (
            WeightedSkill("Refrigeration", 0.8),
            WeightedSkill("HVAC", 0.6),
            WeightedSkill("Electrical", 0.4),
        ),
        "Facilities_Electrical": (
            WeightedSkill("Electrical", 0.9),
            WeightedSkill("General Maintenance", 0.3),
        ),
        "Facilities_Plumbing": (
            WeightedSkill("Plumbing", 0.9),
            WeightedSkill("General Maintenance", 0.3),
        ),
        "Facilities_HVAC": (
            WeightedSkill("HVAC", 0.9),
            WeightedSkill("Electrical", 0.4),
        ),
        "IT_POS Systems": (
            WeightedSkill("POS Systems", 0.8),
            WeightedSkill("IT Support", 0.7),
        ),
        "IT_Network": (
            WeightedSkill("Network", 0.9),
            WeightedSkill("IT Support", 0.6),
        ),
        "IT_Computers": (
            WeightedSkill("IT Support", 0.8),
            WeightedSkill("Computer Repair", 0.7),
        ),
        "Equipment_Shopping Carts": (WeightedSkill("General Maintenance", 0.7),),
        "Equipment_Shelving": (WeightedSkill("General Maintenance", 0.8),),
        "General_Maintenance": (WeightedSkill("General Maintenance", 0.9),),
    }

    @classmethod
    def for_category(cls, category: str, subcategory: str) -> Tuple[WeightedSkill, ...]:
        return cls.TABLE.get(f"{category}_{subcategory}", cls.DEFAULT)

    @classmethod
    def score(cls, provider_skills: Sequence[str], category: str, subcategory: str) -> float:
        weighted = cls.for_category(category, subcategory)
        total_weight = sum(w.weight for w in weighted)
        if total_weight <= 0:
            return 0.0
        covered = sum(
            w.weight for w in weighted
            if any(skill_matches(skill, w.skill) for skill in provider_skills)
        )
        return covered / total_weight


@dataclass(frozen=True)
class RoutingWeights:
    """Per-factor weights of the routing score."""
    skill_match: float = 0.4
    availability: float = 0.2
    proximity: float = 0.3
    performance: float = 0.1

    @classmethod
    def for_priority(cls, priority: Priority) -> "RoutingWeights":
        """HIGH priority favours proximity and availability over skill and track record."""
        base = cls()
        if Priority(priority) != Priority.HIGH:
            return base
        return cls(
            skill_match=round(base.skill_match - 0.1, 4),
            availability=round(base.availability + 0.1, 4),
            proximity=round(base.proximity + 0.1, 4),
            performance=round(base.performance - 0.1, 4),
        )


@dataclass(frozen=True)
class ScoreBreakdown:
    """Named factor scores (each in [0, 1]) and the weights applied to them."""
    skill_match: float
    availability: float
    proximity: float
    performance: float
    weights: RoutingWeights = field(default_factory=RoutingWeights)

    @property
    def total(self) -> float:
        w = self.weights
        return (
            self.skill_match * w.skill_match
            + self.availability * w.availability
            + self.proximity * w.proximity
            + self.performance * w.performance
        )


@dataclass(frozen=True)
class ProviderCandidate:
    """A provider eligible for assignment, annotated by the availability resolver."""
    provider: Provider
    skill_match_score: float
    distance_km: float
    availability_score: float
    overall_score: float

    @property
    def provider_id(self) -> str:
        return self.provider.id


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of a successful route."""
    ticket_id: str
    provider_id: str
    score: float
    reasoning: str
    breakdown: ScoreBreakdown
    assignment: Assignment


@dataclass(frozen=True)
class CompletionStats:
    """Historical ticket counts for one provider."""
    completed: int = 0
    total: int = 0

    @property
    def completion_rate(self) -> float:
        if self.total <= 0:
            return DEFAULT_PERFORMANCE_SCORE
        return self.completed / self.total


def rank_candidates(candidates: List[ProviderCandidate]) -> List[ProviderCandidate]:
    """Order by overall score, highest first, ties by provider id."""
    by_identity = sorted(candidates, key=lambda c: c.provider.id)
    return sorted(by_identity, key=lambda c: c.overall_score, reverse=True)


@dataclass(frozen=True)
class ProviderLoadDrift:
    """Recorded load versus the load implied by the provider's open tickets."""
    provider_id: str
    recorded_load: int
    actual_load: int

    @property
    def delta(self) -> int:
        return self.recorded_load - self.actual_load
