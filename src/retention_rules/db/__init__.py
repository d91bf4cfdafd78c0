"""Database engine and schema for the rule store."""

from .engine import build_engine, check_connection
from .schema import ensure_schema, metadata

__all__ = ["build_engine", "check_connection", "ensure_schema", "metadata"]
