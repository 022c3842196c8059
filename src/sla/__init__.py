"""
SLA Enforcement Module
======================

Bounded Context for Service Level Agreement enforcement and escalation.

Responsibilities:
- Hold the per-priority SLA policy table (hot-reloaded from YAML)
- Fix each ticket's SLA deadline at creation
- Periodically detect assignment, acceptance, resolution and deadline breaches
- Escalate breaching tickets to the store moderator and notify via webhook
"""

__version__ = "1.0.0"
