"""
Retention policy enforcement for backups.

Two rules apply to the archives in the backup directory:

- Daily backups (any day but the 1st) are deleted once their approximate
  age is strictly greater than ``keep_daily_for_days``.
- Monthly backups (taken on the 1st) are kept by count: the
  ``keep_monthly_count`` most recent survive, older ones are deleted
  whatever their age.

Archives whose name carries no date are never deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .catalog import BackupFile, scan, archive_extension
from .deletion import DeletionExecutor, ExecutionReport
from .storage import LocalStorage, RemoteStorage, build_remotes

logger = logging.getLogger(__name__)

DAILY = 'daily'
MONTHLY = 'monthly'


@dataclass(frozen=True)
class RetentionPolicy:
    """How long daily backups live and how many monthly backups are kept."""

    keep_daily_for_days: int = 7
    keep_monthly_count: int = 6

    def __post_init__(self):
        if self.keep_daily_for_days < 0:
            raise ValueError(f"keep_daily_for_days must be >= 0, got {self.keep_daily_for_days}")
        if self.keep_monthly_count < 0:
            raise ValueError(f"keep_monthly_count must be >= 0, got {self.keep_monthly_count}")

    @classmethod
    def from_settings(cls, settings) -> 'RetentionPolicy':
        return cls(
            keep_daily_for_days=settings.keep_backups_for,
            keep_monthly_count=settings.keep_monthly_backups_for
        )


@dataclass(frozen=True)
class PlannedDeletion:
    """A backup marked for removal and the rule that marked it."""

    file: BackupFile
    reason: str

    @property
    def name(self) -> str:
        return self.file.name


@dataclass
class DeletionPlan:
    """
    Files to delete in one run.

    Iterating the plan yields the PlannedDeletion entries. ``kept`` and
    ``unknown`` record the other classification decisions for logging.
    """

    entries: List[PlannedDeletion] = field(default_factory=list)
    kept: List[BackupFile] = field(default_factory=list)
    unknown: List[BackupFile] = field(default_factory=list)

    def __iter__(self) -> Iterator[PlannedDeletion]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    @property
    def names(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def names_for(self, reason: str) -> List[str]:
        return [entry.name for entry in self.entries if entry.reason == reason]


def _monthly_sort_key(backup: BackupFile) -> Tuple[date, str, str]:
    return backup.creation_date, backup.timestamp or '', backup.name


def plan_retention(files: Iterable[BackupFile], policy: RetentionPolicy, today: date) -> DeletionPlan:
    """
    Decide which backups to delete.

    Pure function: no I/O, and the result depends only on its arguments.

    Args:
        files: Catalog snapshot
        policy: Retention limits
        today: Reference date for ages

    Returns:
        DeletionPlan with daily deletions first (name order), then monthly
        deletions (newest surplus first)
    """
    plan = DeletionPlan()
    daily = []
    monthly = []

    for backup in files:
        if not backup.has_known_date:
            plan.unknown.append(backup)
        elif backup.is_monthly:
            monthly.append(backup)
        else:
            daily.append(backup)

    for backup in sorted(daily, key=lambda b: b.name):
        if backup.age_days(today) > policy.keep_daily_for_days:
            plan.entries.append(PlannedDeletion(backup, DAILY))
        else:
            plan.kept.append(backup)

    monthly.sort(key=_monthly_sort_key, reverse=True)
    plan.kept.extend(monthly[:policy.keep_monthly_count])
    for backup in monthly[policy.keep_monthly_count:]:
        plan.entries.append(PlannedDeletion(backup, MONTHLY))

    return plan


@dataclass
class RetentionReport:
    """Outcome of one retention run."""

    plan: DeletionPlan
    execution: Optional[ExecutionReport]
    dry_run: bool = False
    logs: List[str] = field(default_factory=list)


class RetentionManager:
    """
    Runs the retention cycle for the backup directory: scan, plan, delete.
    """

    def __init__(self, settings, remotes: Sequence[RemoteStorage] = (), today: Optional[date] = None):
        """
        Initialize retention manager.

        Args:
            settings: lampbackup.config.Settings
            remotes: Remote handlers that may hold copies of the archives
            today: Reference date (defaults to the current local date)
        """
        self.settings = settings
        self.remotes = list(remotes)
        self.today = today
        self.policy = RetentionPolicy.from_settings(settings)
        self.logs = []

    def build_plan(self) -> DeletionPlan:
        """
        Scan the backup directory and compute the deletion plan.

        Raises:
            CatalogError: If the backup directory cannot be listed
        """
        today = self.today or date.today()
        extension = archive_extension(self.settings.encrypt_files)

        files = scan(self.settings.backup_dir, extension)
        self._log(f"Found {len(files)} *.{extension} file(s) in {self.settings.backup_dir}")

        plan = plan_retention(files, self.policy, today)

        for backup in plan.unknown:
            self._log(f"Backup file name: {backup.name} has no embedded date, skipped")
        for backup in plan.kept:
            self._log(
                f"Keep {backup.kind} backup file name: {backup.name} "
                f"(age: {backup.age_days(today)} days)"
            )
        for entry in plan:
            self._log(
                f"Delete {entry.reason} backup file name: {entry.name} "
                f"(age: {entry.file.age_days(today)} days)"
            )

        return plan

    def enforce(self, dry_run: bool = False) -> RetentionReport:
        """
        Enforce the retention policy.

        Args:
            dry_run: Only compute and log the plan

        Returns:
            RetentionReport

        Raises:
            CatalogError: If the backup directory cannot be listed
            DeletionError: If the backup directory is not accessible for deletion
        """
        self._log(
            f"Enforcing retention policy: keep daily backups for "
            f"{self.policy.keep_daily_for_days} days, keep "
            f"{self.policy.keep_monthly_count} monthly backups"
        )

        plan = self.build_plan()

        if dry_run:
            self._log(f"Dry run: {len(plan)} file(s) would be deleted")
            return RetentionReport(plan=plan, execution=None, dry_run=True, logs=self.logs)

        executor = DeletionExecutor(
            LocalStorage(self.settings.backup_dir),
            self.remotes,
            delete_remote=self.settings.delete_remote_files
        )
        try:
            execution = executor.apply(plan)
        finally:
            self.logs.extend(executor.logs)

        self._log(f"Retention enforcement complete. {execution.summary()}")

        return RetentionReport(plan=plan, execution=execution, logs=self.logs)

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def enforce_retention_policy(settings, remotes: Optional[Sequence[RemoteStorage]] = None,
                             today: Optional[date] = None, dry_run: bool = False) -> RetentionReport:
    """
    Enforce the retention policy for the configured backup directory.

    Args:
        settings: lampbackup.config.Settings
        remotes: Remote handlers (None builds them from the settings)
        today: Reference date (defaults to today)
        dry_run: Only compute the plan

    Returns:
        RetentionReport from RetentionManager.enforce()
    """
    owned = remotes is None
    if owned:
        remotes = build_remotes(settings)

    try:
        manager = RetentionManager(settings, remotes, today=today)
        return manager.enforce(dry_run=dry_run)
    finally:
        if owned:
            for remote in remotes:
                remote.close()
