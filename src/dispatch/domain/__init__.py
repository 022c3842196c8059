"""
Dispatch Domain Layer
=====================

Contains:
- Entities: Ticket, Provider, Assignment, Store, Remark, GeoPoint
- Value Objects: ScoreBreakdown, RoutingWeights, ProviderCandidate,
  RoutingDecision, CompletionStats
- Pure scoring helpers: haversine distance, skill matching

This layer has no dependencies on infrastructure.
"""

from src.dispatch.domain.entities import (
    Assignment,
    GeoPoint,
    Provider,
    Remark,
    Store,
    Ticket,
    utcnow,
)
from src.dispatch.domain.value_objects import (
    CompletionStats,
    ProviderLoadDrift,
    ProviderCandidate,
    RoutingDecision,
    RoutingSkillTable,
    RoutingWeights,
    ScoreBreakdown,
    WeightedSkill,
    haversine_km,
    rank_candidates,
    skill_match_score,
    skill_matches,
    DEFAULT_PERFORMANCE_SCORE,
    NEUTRAL_SKILL_SCORE,
    UNKNOWN_DISTANCE_KM,
)

__all__ = [
    "Assignment",
    "GeoPoint",
    "Provider",
    "Remark",
    "Store",
    "Ticket",
    "utcnow",
    "CompletionStats",
    "ProviderLoadDrift",
    "ProviderCandidate",
    "RoutingDecision",
    "RoutingSkillTable",
    "RoutingWeights",
    "ScoreBreakdown",
    "WeightedSkill",
    "haversine_km",
    "rank_candidates",
    "skill_match_score",
    "skill_matches",
    "DEFAULT_PERFORMANCE_SCORE",
    "NEUTRAL_SKILL_SCORE",
    "UNKNOWN_DISTANCE_KM",
]
