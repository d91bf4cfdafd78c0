"""Custom exceptions for Retention Rules."""


class RetentionRulesError(Exception):
    """Base exception for all Retention Rules errors."""


class ValidationError(RetentionRulesError):
    """Exception raised for invalid input, before any storage access."""


class StorageError(RetentionRulesError):
    """Exception raised when the rule store rejects or fails an operation."""


def require_owner(owner_user_id: str | None) -> str:
    """Return the trimmed, lowercased owner id or raise if it is missing or blank."""

    owner = (owner_user_id or "").strip().lower()
    if not owner:
        raise ValidationError(
            "owner_user_id is required. Multi-user isolation requires a valid user email."
        )
    return owner
