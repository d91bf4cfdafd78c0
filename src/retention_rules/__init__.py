"""Retention Rules - per-user email retention rule store and classifier.

This package lets users define keep/delete rules for incoming email keyed by
sender domain, subdomain, exact address or subject substring, and evaluates
batches of pending messages against those rules.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from retention_rules.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
