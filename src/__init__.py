"""
StoreFix Dispatch
=================

Ticket dispatch and SLA enforcement service for store maintenance issues.
"""

__version__ = "1.0.0"
