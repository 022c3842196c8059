"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database connection management
- LLM API clients
"""
