"""HTTP surface for the rule store."""

from .app import create_app

__all__ = ["create_app"]
