"""
Contract classification and rule extraction engine.

Turns energy-contract documents into typed, confidence-scored fields and
deduplicated business rules.
"""

__version__ = "1.0.0"
