"""
Triage Module
=============

Bounded Context for issue classification.

Responsibilities:
- Classify store issues into category, subcategory and priority
- Fall back to deterministic keyword rules when the LLM is unavailable
- Map classifications to the provider skills a repair needs
"""

__version__ = "1.0.0"
