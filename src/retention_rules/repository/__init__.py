"""Repositories over the rule store and pending message tables."""
