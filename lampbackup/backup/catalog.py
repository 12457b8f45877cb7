"""
Catalog of the backup archives present in the backup directory.

Each run rebuilds the catalog from a directory listing; nothing is cached
between runs.
"""

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional

from .dates import parse_backup_date, parse_backup_timestamp, approximate_age_days
from .storage import LocalStorage, StorageError


class CatalogError(Exception):
    """Raised when the backup directory cannot be listed."""
    pass


@dataclass(frozen=True)
class BackupFile:
    """One backup archive found in the backup directory."""

    name: str
    creation_date: Optional[date] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_name(cls, name: str) -> 'BackupFile':
        return cls(
            name=name,
            creation_date=parse_backup_date(name),
            timestamp=parse_backup_timestamp(name)
        )

    @property
    def has_known_date(self) -> bool:
        return self.creation_date is not None

    @property
    def is_monthly(self) -> bool:
        """Backups taken on the 1st of a month are monthly backups."""
        return self.creation_date is not None and self.creation_date.day == 1

    @property
    def kind(self) -> str:
        if self.creation_date is None:
            return 'unknown'
        return 'monthly' if self.is_monthly else 'daily'

    def age_days(self, today: date) -> Optional[int]:
        """Approximate age in days, or None when the date is unknown."""
        if self.creation_date is None:
            return None
        return approximate_age_days(self.creation_date, today)


def archive_extension(encrypted: bool) -> str:
    """Extension of the archives produced by the backup job."""
    return 'enc' if encrypted else 'tgz'


def scan(directory: str, extension: str) -> List[BackupFile]:
    """
    List the backup archives in a directory.

    Every file with the given extension is returned, including those whose
    name carries no parseable date; callers decide what to do with them.

    Args:
        directory: Backup directory to list (not recursive)
        extension: Archive extension without the dot ('tgz' or 'enc')

    Returns:
        BackupFile list sorted by name

    Raises:
        CatalogError: If the directory is missing or cannot be read
    """
    base = Path(directory)

    if not base.is_dir():
        raise CatalogError(f"Backup directory does not exist: {directory}")

    try:
        names = LocalStorage(directory).list_files(f"*.{extension.lstrip('.')}")
    except StorageError as e:
        raise CatalogError(str(e))

    return [BackupFile.from_name(name) for name in names]
