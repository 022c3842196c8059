"""
Dispatch Module
===============

Bounded Context for ticket dispatch.

Responsibilities:
- Persist reported tickets with their classification and SLA deadline
- Find providers with spare capacity and score them for a ticket
- Drive the ticket lifecycle: propose, accept, reject, complete, approve
- Keep provider load consistent with the tickets it holds
"""

__version__ = "1.0.0"
