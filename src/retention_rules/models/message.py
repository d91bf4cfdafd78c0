"""Pending message model.

Messages are supplied by the mail provider integration. The rule engine only
reads their routing fields and annotates them with a resolved action.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from retention_rules.models.rule import Action

UNDECIDED = "undecided"


class PendingMessage(BaseModel):
    """A message awaiting (or annotated with) a retention decision."""

    id: int | None = Field(default=None, description="Store row id")
    message_id: str = Field(description="Provider message ID")
    owner_user_id: str = Field(description="Owning user")

    from_email: str = Field(default="", description="Sender address")
    to_email: str = Field(default="", description="Recipient address")
    subject: str = Field(default="", description="Subject header")

    # Derived from from_email by the domain parser when not supplied.
    primary_domain: str | None = Field(default=None, description="Registrable sender domain")
    subdomain: str | None = Field(default=None, description="Full sender host, if it has a subdomain")

    email_date: datetime | None = Field(default=None, description="Message timestamp")

    action: str | None = Field(default=None, description="Resolved action or 'undecided'")
    matched_rule: str | None = Field(default=None, description="Label of the deciding rule")
    matched_pattern: str | None = Field(default=None, description="Pattern text of the deciding rule")
    evaluated_at: datetime | None = None


class ClassificationResult(BaseModel):
    """Action resolved for one message."""

    action: Action | None = None
    matched_rule: str = "none"
    matched_pattern: str | None = None

    @property
    def action_label(self) -> str:
        return self.action.value if self.action else UNDECIDED


class EvaluationSummary(BaseModel):
    """Counts of resolved actions over one evaluation batch."""

    total: int = 0
    keep: int = 0
    delete: int = 0
    delete_1d: int = 0
    delete_10d: int = 0
    undecided: int = 0

    def record(self, result: ClassificationResult) -> None:
        self.total += 1
        label = result.action_label
        setattr(self, label, getattr(self, label) + 1)

    def merge(self, other: "EvaluationSummary") -> None:
        for field in ("total", "keep", "delete", "delete_1d", "delete_10d", "undecided"):
            setattr(self, field, getattr(self, field) + getattr(other, field))


class ActionSummary(BaseModel):
    """Pending messages grouped by resolved action."""

    action: str
    count: int
    oldest_date: datetime | None = None
    newest_date: datetime | None = None


class ExecutionSummary(BaseModel):
    """Per-owner view of pending messages by resolved action."""

    total: int = 0
    by_action: list[ActionSummary] = Field(default_factory=list)


class DeletionPreview(BaseModel):
    """Messages due for deletion plus the count still too young to act on."""

    due: list[PendingMessage] = Field(default_factory=list)
    skipped: int = 0
