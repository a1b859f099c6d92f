# mlm_system/errors.py
"""
Engine error taxonomy.

StructuralError     - no sponsor resolvable; caller falls back to the root member.
PostingConflict     - posting already exists; the work is done, treat as success.
StorageFailure      - transient storage error; retry that posting only.
InvariantViolation  - ledger corruption; halt reconciliation for the member.
"""
from typing import Optional


class MLMError(Exception):
    """Base class for compensation engine errors."""
    pass


class StructuralError(MLMError):
    """Tree structure cannot be resolved (missing sponsor, no root)."""
    pass


class PostingConflict(MLMError):
    """Duplicate posting detected by the posting-key guard."""

    def __init__(self, postingKey: str):
        super().__init__(f"Posting already exists: {postingKey}")
        self.postingKey = postingKey


class StorageFailure(MLMError):
    """Transient failure writing to the ledger."""

    def __init__(self, message: str, postingKey: Optional[str] = None):
        super().__init__(message)
        self.postingKey = postingKey


class InvariantViolation(MLMError):
    """Ledger invariant broken. Requires manual audit."""

    def __init__(self, message: str, memberIds=None):
        super().__init__(message)
        self.memberIds = list(memberIds or [])
