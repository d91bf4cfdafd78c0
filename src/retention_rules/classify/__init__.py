"""Message classification against the rule store."""

from .engine import ClassificationEngine, classify

__all__ = ["ClassificationEngine", "classify"]
