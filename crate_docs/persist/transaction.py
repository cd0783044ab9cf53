"""
Transactional cache updates.

A CacheTransaction moves the live entry aside before a re-cache so the
caller always mutates a clean slot. Commit discards the backup; anything
else (an exception, an early return, an explicit rollback) puts the previous
entry back.

Example:
    >>> with CacheTransaction(store, crate_id) as txn:
    ...     await downloader.download(crate_id)
    ...     txn.commit()
"""

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

from crate_docs.errors import CacheIOError

from .identifiers import CrateIdentifier
from .paths import BACKUP_DIR_PREFIX
from .storage import CacheStore

logger = logging.getLogger(__name__)


def backup_crate_to_temp(store: CacheStore, crate_id: CrateIdentifier) -> Path:
    """
    Move a cached crate into a unique temporary backup directory.

    Args:
        store: Cache store
        crate_id: Crate to back up

    Returns:
        Path of the backup copy
    """
    source = store.crate_path(crate_id)
    backup_root = Path(tempfile.gettempdir()) / BACKUP_DIR_PREFIX
    backup_path = backup_root / f"{crate_id}-{time.time_ns()}-{os.getpid()}"

    try:
        backup_root.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(backup_path))
    except OSError as e:
        raise CacheIOError(f"Failed to back up {crate_id}: {e}") from e

    logger.debug(f"Backed up {crate_id} to {backup_path}")
    return backup_path


def restore_crate_from_backup(store: CacheStore, crate_id: CrateIdentifier, backup_path: Path) -> None:
    """Replace the live entry for crate_id with the backup."""
    target = store.crate_path(crate_id)
    try:
        if target.exists():
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(backup_path), str(target))
    except OSError as e:
        raise CacheIOError(
            f"Failed to restore {crate_id} from backup {backup_path}: {e}",
            hint="The previous cache entry is still available at the backup path",
        ) from e


def cleanup_backup(backup_path: Path) -> None:
    """Delete a backup directory if it still exists."""
    if backup_path.exists():
        try:
            shutil.rmtree(backup_path)
        except OSError as e:
            raise CacheIOError(f"Failed to remove backup {backup_path}: {e}") from e


class CacheTransaction:
    """
    Backup-and-rollback scope around a cache mutation.

    Exactly one of commit() or rollback() takes effect. Leaving the
    context manager without commit() rolls back.
    """

    def __init__(self, store: CacheStore, crate_id: CrateIdentifier):
        self.store = store
        self.crate_id = crate_id
        self.backup_path: Optional[Path] = None
        self.started = False
        self.committed = False
        self.rolled_back = False

    def begin(self) -> None:
        """
        Move any existing entry to a backup, leaving a clean slot.

        A crate that is not cached yet needs no backup; rollback then just
        removes whatever the caller wrote.
        """
        if self.started:
            return
        self.started = True
        if self.store.crate_path(self.crate_id).exists():
            self.backup_path = backup_crate_to_temp(self.store, self.crate_id)

    def commit(self) -> None:
        """Keep the new entry and discard the backup."""
        if self.committed or self.rolled_back:
            return
        self.committed = True
        if self.backup_path is not None:
            backup_path, self.backup_path = self.backup_path, None
            cleanup_backup(backup_path)
        logger.info(f"Committed cache update for {self.crate_id}")

    def rollback(self) -> None:
        """Restore the previous entry. Safe to call more than once."""
        if self.committed or self.rolled_back:
            return
        self.rolled_back = True

        backup_path, self.backup_path = self.backup_path, None
        if backup_path is not None:
            restore_crate_from_backup(self.store, self.crate_id, backup_path)
            cleanup_backup(backup_path)
            logger.warning(f"Rolled back cache update for {self.crate_id}")
        elif self.started:
            # Nothing was cached before; drop the partial entry
            self.store.remove_crate(self.crate_id)
            logger.warning(f"Removed partial cache entry for {self.crate_id}")

    def __enter__(self):
        """Context manager entry."""
        self.begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit; rolls back unless committed."""
        if not self.committed:
            self.rollback()
        return False
