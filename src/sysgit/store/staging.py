"""Staged ref set for multi-branch commits.

New branch tips are first written under ``<staging_prefix><txid>/<branch>``.
Only when every branch of the batch succeeded are they copied into the real
namespace, together with the removal of the staging refs, in one update-ref
transaction. A batch that fails leaves its staging refs behind untouched;
``prune_abandoned`` removes them later (``sysgit init``).
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from .refs import RefStore

logger = logging.getLogger(__name__)


def new_transaction_id() -> str:
    """Timestamp-derived id, unique per process."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    return f"{stamp}-{os.getpid()}"


class StagedRefSet:
    """Commit tips waiting for promotion, keyed by branch."""

    def __init__(
        self,
        store: RefStore,
        staging_prefix: str,
        txid: Optional[str] = None,
    ):
        self.store = store
        self.txid = txid or new_transaction_id()
        self.namespace = f"{staging_prefix}{self.txid}/"
        self._staged: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._staged)

    def __bool__(self) -> bool:
        return bool(self._staged)

    @property
    def staged(self) -> dict[str, str]:
        return dict(self._staged)

    def ref_name(self, branch: str) -> str:
        return self.namespace + branch

    def stage(self, branch: str, commit: str) -> None:
        """Record ``commit`` as the pending tip of ``branch``."""
        self.store.update_ref(self.ref_name(branch), commit)
        self._staged[branch] = commit
        logger.debug(f"Staged {branch} -> {commit[:8]} ({self.txid})")

    def promote(self) -> dict[str, str]:
        """
        Copy every staged tip into the real namespace and drop the staging refs.

        Returns:
            Mapping of promoted branch to commit
        """
        if not self._staged:
            return {}

        updates = [
            (self.store.ref_name(branch), commit)
            for branch, commit in self._staged.items()
        ]
        deletes = [self.ref_name(branch) for branch in self._staged]
        self.store.transaction(updates=updates, deletes=deletes)

        promoted = dict(self._staged)
        self._staged.clear()
        logger.info(f"Promoted {len(promoted)} branch(es) from transaction {self.txid}")
        return promoted


def prune_abandoned(store: RefStore, staging_prefix: str) -> list[str]:
    """Delete every leftover staging ref; returns the deleted ref names."""
    refs = list(store.list_refs(staging_prefix))
    if refs:
        store.transaction(deletes=refs)
        logger.info(f"Pruned {len(refs)} abandoned staging ref(s)")
    return refs
