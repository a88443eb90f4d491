"""
backup - Point-in-time snapshots of a store's state, taken before mutation.

A store has at most one live backup: the file ``terraformig.tfstate.backup``
in its root. Creating a second one is refused instead of overwriting the
recovery point of an earlier, possibly failed, run.
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .errors import BackupAlreadyExists, BackupUnreadable, NoBackupFound
from .models import BACKUP_GLOB, LOCAL, Backup, StateStore
from .terraform import StateTool

logger = logging.getLogger(__name__)


class BackupStore:
    """
    Create, purge and restore backups for :class:`~terraformig.models.StateStore`
    directories. All side effects stay inside the given store's root.
    """

    def __init__(self, tool: StateTool) -> None:
        self._tool = tool

    def exists(self, store: StateStore) -> bool:
        return store.backup_path.exists()

    def create(self, store: StateStore) -> Backup:
        """
        Pull the store's current state and write it to the backup slot.

        Raises :class:`~terraformig.errors.BackupAlreadyExists` if a backup is
        already present.
        """
        if self.exists(store):
            raise BackupAlreadyExists(store.root)
        logger.info('Creating statefile backup titled "%s" in %s.', store.backup_path.name, store.root)
        content = self._tool.state_pull(store.root)
        store.backup_path.write_text(content, encoding="utf-8")
        return Backup(
            store=store.root,
            path=store.backup_path,
            content=content,
            created_at=datetime.now(timezone.utc),
        )

    def purge(self, store: StateStore) -> List[Path]:
        """Delete every backup artifact in the store. Returns the removed paths."""
        removed: List[Path] = []
        for path in sorted(store.root.glob(BACKUP_GLOB)):
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            removed.append(path)
        if removed:
            logger.debug("Removed %d backup file(s) from %s", len(removed), store.root)
        return removed

    def read(self, store: StateStore) -> str:
        """Return the backup content of the store."""
        if not self.exists(store):
            raise NoBackupFound([store.root])
        try:
            return store.backup_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise BackupUnreadable(store.root, str(exc)) from exc

    def rollback(self, store: StateStore) -> Backup:
        """
        Restore the store's live state from its backup. The backup stays in
        place afterwards.

        Local stores get the backup written over ``terraform.tfstate``; stores
        whose cached backend is remote get it pushed with ``state push -force``.
        """
        content = self.read(store)
        backend_type = store.cached_backend_type()
        if backend_type == LOCAL:
            logger.info("Restoring %s from %s.", store.live_state_path, store.backup_path.name)
            store.live_state_path.write_text(content, encoding="utf-8")
        else:
            logger.info("Pushing %s to the %s backend of %s.", store.backup_path.name, backend_type, store.root)
            self._tool.state_push(store.root, store.backup_path, force=True)
        return Backup(
            store=store.root,
            path=store.backup_path,
            content=content,
            created_at=datetime.fromtimestamp(store.backup_path.stat().st_mtime, timezone.utc),
        )
