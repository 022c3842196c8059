"""
Shared Kernel Module
====================

Shared infrastructure used across all bounded contexts
(Triage, SLA enforcement and Dispatch).

Architecture Pattern: Modular Monolith
- Each module (triage, sla, dispatch) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add routing or escalation logic to the shared kernel.
"""

__version__ = "1.0.0"
