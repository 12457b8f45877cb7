"""
Applies a deletion plan to the local backup directory and the remotes.

A failure on one file or one remote never stops the others; every
attempt ends up as a DeletionOutcome in the returned ExecutionReport.
"""

import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .storage import LocalStorage, RemoteStorage, StorageError

logger = logging.getLogger(__name__)

DELETED = 'deleted'
NOT_FOUND = 'not_found'
FAILED = 'failed'


class DeletionError(Exception):
    """Raised when a deletion run cannot start at all."""
    pass


@dataclass(frozen=True)
class DeletionOutcome:
    """Result of deleting one file from one target ('local' or a remote name)."""

    name: str
    target: str
    status: str
    reason: str
    detail: Optional[str] = None


@dataclass
class ExecutionReport:
    """Per-item outcomes of one deletion run."""

    outcomes: List[DeletionOutcome] = field(default_factory=list)

    def add(self, outcome: DeletionOutcome):
        self.outcomes.append(outcome)

    def count(self, status: str, target: Optional[str] = None) -> int:
        return sum(
            1 for o in self.outcomes
            if o.status == status and (target is None or o.target == target)
        )

    @property
    def deleted(self) -> int:
        return self.count(DELETED)

    @property
    def not_found(self) -> int:
        return self.count(NOT_FOUND)

    @property
    def failed(self) -> int:
        return self.count(FAILED)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def for_target(self, target: str) -> List[DeletionOutcome]:
        return [o for o in self.outcomes if o.target == target]

    def summary(self) -> str:
        return f"deleted: {self.deleted}, not found: {self.not_found}, failed: {self.failed}"


class DeletionExecutor:
    """
    Removes planned backups locally and, optionally, from every remote.

    This is the only component that deletes anything.
    """

    def __init__(self, local_storage: LocalStorage, remotes: Sequence[RemoteStorage] = (),
                 delete_remote: bool = False):
        """
        Args:
            local_storage: Handler for the local backup directory
            remotes: Remote handlers that may hold copies of the archives
            delete_remote: Also delete from the remotes (DELETE_REMOTE_FILES)
        """
        self.local_storage = local_storage
        self.remotes = list(remotes)
        self.delete_remote = delete_remote
        self.logs = []

    def apply(self, plan) -> ExecutionReport:
        """
        Apply a deletion plan.

        Args:
            plan: DeletionPlan from plan_retention()

        Returns:
            ExecutionReport with one outcome per file and target

        Raises:
            DeletionError: If the local backup directory is not accessible
        """
        if not self.local_storage.is_accessible():
            raise DeletionError(
                f"Backup directory is not accessible: {self.local_storage.base_path}"
            )

        report = ExecutionReport()

        for entry in plan:
            report.add(self._delete_local(entry.file.name, entry.reason))

            if self.delete_remote:
                for remote in self.remotes:
                    report.add(self._delete_remote(remote, entry.file.name, entry.reason))

        return report

    def _delete_local(self, name: str, reason: str) -> DeletionOutcome:
        try:
            self.local_storage.delete(name)
        except FileNotFoundError:
            self._log(f"Old {reason} backup file name: {name} does not exist", logging.WARNING)
            return DeletionOutcome(name, 'local', NOT_FOUND, reason)
        except StorageError as e:
            self._log(f"Failed to delete old {reason} backup file name: {name}: {e}", logging.ERROR)
            return DeletionOutcome(name, 'local', FAILED, reason, str(e))

        self._log(f"Old {reason} backup file name: {name} has been deleted")
        return DeletionOutcome(name, 'local', DELETED, reason)

    def _delete_remote(self, remote: RemoteStorage, name: str, reason: str) -> DeletionOutcome:
        try:
            if not remote.exists(name):
                self._log(f"{remote.name} old backup file: {name} does not exist")
                return DeletionOutcome(name, remote.name, NOT_FOUND, reason)

            remote.delete(name)
        except Exception as e:
            self._log(f"Failed to delete {remote.name} old backup file: {name}: {e}", logging.ERROR)
            return DeletionOutcome(name, remote.name, FAILED, reason, str(e))

        self._log(f"{remote.name} old backup file: {name} has been deleted")
        return DeletionOutcome(name, remote.name, DELETED, reason)

    def _log(self, message: str, level: int = logging.INFO):
        """Record a timestamped log line and forward it to the module logger."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
