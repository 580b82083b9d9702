from __future__ import annotations


class QuotaCoreError(Exception):
    """Base error for quotacore."""


class InvalidInputError(QuotaCoreError):
    """Malformed policy or request; nothing was mutated."""


class PolicyNotFoundError(QuotaCoreError):
    """Patch referenced a policy id that does not exist."""


class IdempotencyConflictError(QuotaCoreError):
    """Request id reused with a different logical payload."""


class StorageConfigError(QuotaCoreError):
    """Missing or invalid storage provider configuration."""
