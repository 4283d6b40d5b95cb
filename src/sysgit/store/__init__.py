"""State branch store backed by a bare git repository.

This package provides:
- RefStore: git plumbing adapter (resolution, listing, ref updates, hooks)
- StagedRefSet: two-phase ref update used by multi-branch commits
- GitError/RefLockError: git failures

Refs managed:
    <repo>.git/
    ├── refs/heads/<branch>                    # State branches
    └── refs/sysgit/staging/<txid>/<branch>    # Pending commit tips
"""

from .refs import (
    RefStore,
    GitError,
    RefLockError,
    NULL_HASH,
    is_hash,
)
from .staging import StagedRefSet, new_transaction_id, prune_abandoned

__all__ = [
    "RefStore",
    "GitError",
    "RefLockError",
    "NULL_HASH",
    "is_hash",
    "StagedRefSet",
    "new_transaction_id",
    "prune_abandoned",
]
