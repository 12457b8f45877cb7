"""
Source handlers for backup operations.

Supports:
- LocalSource: Files and directories on the local filesystem
- MySQLSource: mysqldump output written to the temporary directory
"""

import logging
import shutil
import subprocess
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when source acquisition fails."""
    pass


class LocalSource:
    """
    Handler for local filesystem sources.

    The paths are archived in place; nothing is copied.
    """

    def __init__(self, paths: Sequence[str], exclude_patterns: Sequence[str] = ()):
        """
        Initialize local source handler.

        Args:
            paths: List of file/directory paths to backup
            exclude_patterns: Glob patterns matched against the path or its name
        """
        self.paths = list(paths)
        self.exclude_patterns = list(exclude_patterns)

    def _should_exclude(self, path: Path) -> bool:
        path_str = str(path)
        for pattern in self.exclude_patterns:
            if fnmatch(path_str, pattern) or fnmatch(path.name, pattern):
                return True
        return False

    def acquire(self) -> List[str]:
        """
        Validate the configured paths.

        Returns:
            Absolute paths to include in the archive

        Raises:
            SourceError: If nothing is configured or a path does not exist
        """
        if not self.paths:
            raise SourceError("No backup paths configured, nothing to back up")

        acquired_paths = []

        for path in self.paths:
            source_path = Path(path).expanduser()

            if not source_path.exists():
                raise SourceError(f"Path does not exist: {path}")

            if self._should_exclude(source_path):
                logger.info(f"Excluded from backup: {path}")
                continue

            acquired_paths.append(str(source_path.absolute()))

        return acquired_paths

    def cleanup(self):
        """Local source has nothing to clean up."""
        pass


class MySQLSource:
    """
    Dumps MySQL databases with mysqldump.

    With no database names configured, all databases go into a single
    ``mysql_<date>.sql``; otherwise each database gets ``<db>_<date>.sql``.
    """

    def __init__(self, root_password: str, databases: Sequence[str], temp_dir: str,
                 backup_date: str, user: str = 'root'):
        self.root_password = root_password
        self.databases = [db for db in databases if db]
        self.temp_dir = Path(temp_dir)
        self.backup_date = backup_date
        self.user = user
        self.dump_files = []

    def _credentials(self) -> List[str]:
        return ['-u', self.user, f'-p{self.root_password}']

    def check_credentials(self):
        """
        Verify the MySQL root password.

        Raises:
            SourceError: If mysql rejects the password or cannot run
        """
        try:
            result = subprocess.run(
                ['mysql', *self._credentials(), '-e', 'exit'],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        except FileNotFoundError:
            raise SourceError("mysql is not installed. Install it and try again")

        if result.returncode != 0:
            raise SourceError("MySQL root password is incorrect. Please check it and try again")

    def _dump(self, args: List[str], output: Path, label: str):
        try:
            with open(output, 'wb') as f:
                result = subprocess.run(
                    ['mysqldump', *self._credentials(), *args],
                    stdout=f,
                    stderr=subprocess.DEVNULL
                )
        except FileNotFoundError:
            raise SourceError("mysqldump is not installed. Install it and try again")
        except OSError as e:
            raise SourceError(f"Failed to write MySQL dump {output}: {e}")

        if result.returncode != 0:
            raise SourceError(f"MySQL {label} backup failed")

        self.dump_files.append(str(output))
        logger.info(f"MySQL {label} dump file name: {output}")

    def acquire(self) -> List[str]:
        """
        Dump the configured databases.

        Returns:
            Paths of the dump files

        Raises:
            SourceError: If the password is wrong or any dump fails
        """
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.check_credentials()

        if not self.databases:
            self._dump(
                ['--all-databases'],
                self.temp_dir / f"mysql_{self.backup_date}.sql",
                'all databases'
            )
        else:
            for db in self.databases:
                self._dump(
                    [db],
                    self.temp_dir / f"{db}_{self.backup_date}.sql",
                    f'database name [{db}]'
                )

        return list(self.dump_files)

    def cleanup(self) -> List[str]:
        """
        Delete temporary dump files.

        Returns:
            Paths that were removed
        """
        removed = []
        if not self.temp_dir.is_dir():
            return removed

        for sql in sorted(self.temp_dir.glob('*.sql')):
            try:
                sql.unlink()
                removed.append(str(sql))
            except OSError as e:
                logger.warning(f"Failed to delete MySQL temporary dump file {sql}: {e}")

        self.dump_files = []
        return removed


def check_commands(settings) -> bool:
    """
    Check that the external tools the backup needs are installed.

    Args:
        settings: lampbackup.config.Settings

    Returns:
        True if rclone is available

    Raises:
        SourceError: If a required binary is missing
    """
    binaries = []
    if settings.mysql_root_password:
        binaries += ['mysql', 'mysqldump']

    for binary in binaries:
        if shutil.which(binary) is None:
            raise SourceError(f"{binary} is not installed. Install it and try again")

    return shutil.which('rclone') is not None


def create_mysql_source(settings, backup_date: str) -> Optional[MySQLSource]:
    """
    Create the MySQL source, or None when no root password is configured.
    """
    if not settings.mysql_root_password:
        return None

    return MySQLSource(
        root_password=settings.mysql_root_password,
        databases=settings.mysql_databases,
        temp_dir=settings.temp_dir,
        backup_date=backup_date
    )
