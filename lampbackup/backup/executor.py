"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Check required commands
2. Dump MySQL databases (if configured)
3. Create the tarball in the backup directory
4. Encrypt it (if configured) and remove the plain tarball
5. Remove temporary dump files
6. Upload to every configured remote
7. Enforce the retention policy
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from lampbackup.utils.crypto import ArchiveCipher
from .catalog import CatalogError
from .compression import create_archive, generate_archive_filename, format_size, get_archive_size
from .deletion import DeletionError
from .retention import RetentionManager, RetentionReport
from .sources import LocalSource, check_commands, create_mysql_source
from .storage import RcloneStorage, RemoteStorage, StorageError, build_remotes

logger = logging.getLogger(__name__)


@dataclass
class BackupRunReport:
    """Everything that happened during one backup run."""

    status: str = 'running'
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archive_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    uploads: Dict[str, str] = field(default_factory=dict)
    upload_errors: Dict[str, str] = field(default_factory=dict)
    retention: Optional[RetentionReport] = None
    retention_error: Optional[str] = None
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class BackupExecutor:
    """
    Orchestrates the complete backup workflow.
    """

    def __init__(self, settings, remotes: Optional[Sequence[RemoteStorage]] = None,
                 today: Optional[date] = None, now: Optional[datetime] = None):
        """
        Initialize backup executor.

        Args:
            settings: lampbackup.config.Settings
            remotes: Remote handlers (None builds them from the settings)
            today: Reference date for retention (default: today)
            now: Timestamp embedded in the archive name (default: now)
        """
        self.settings = settings
        self._owns_remotes = remotes is None
        self.remotes = list(remotes) if remotes is not None else build_remotes(settings)
        self.today = today
        self.now = now
        self.mysql_source = None
        self.report = BackupRunReport()

    def execute(self) -> BackupRunReport:
        """
        Execute the backup.

        A failure while dumping, archiving or encrypting marks the run as
        failed and skips upload and cleanup. Upload failures are recorded
        without failing the run. A retention failure leaves the run
        successful but is kept in retention_error.

        Returns:
            BackupRunReport with execution results
        """
        self.report.started_at = datetime.now()
        start = time.monotonic()

        self._log("Backup progress start")

        try:
            self._execute_workflow()
            self._log("Backup progress complete")
        except Exception as e:
            self.report.status = 'failed'
            self.report.error_message = str(e)
            self._log(f"Backup failed: {e}", logging.ERROR)
        finally:
            self._cleanup_dumps()

        try:
            if self.report.status != 'failed':
                self._log("Upload progress start")
                self._upload()
                self._log("Upload progress complete")

                self._log("Cleaning up")
                self._enforce_retention()

                self.report.status = 'success'
        finally:
            self._close_remotes()

        self.report.completed_at = datetime.now()
        self._log("All done")
        self._log(f"Backup and transfer completed in {int(time.monotonic() - start)} seconds")

        return self.report

    def _execute_workflow(self):
        """Dump, archive and encrypt."""
        rclone_available = check_commands(self.settings)
        if not rclone_available:
            skipped = [r for r in self.remotes if isinstance(r, RcloneStorage)]
            if skipped or self.settings.upload_rclone:
                self._log("rclone is not installed, rclone remote skipped", logging.WARNING)
            self.remotes = [r for r in self.remotes if not isinstance(r, RcloneStorage)]

        backup_paths = self._acquire_sources()

        archive_path = self._create_archive(backup_paths)

        if self.settings.encrypt_files:
            archive_path = self._encrypt(archive_path)

        self.report.archive_path = archive_path
        self.report.file_size_bytes = get_archive_size(archive_path)
        self._log(f"File name: {archive_path}, File size: {format_size(archive_path)}")

    def _acquire_sources(self) -> List[str]:
        """
        Collect the paths to archive, dumping MySQL first.

        Raises:
            SourceError: If a path is missing or a dump fails
        """
        paths = LocalSource(
            self.settings.backup_paths,
            self.settings.exclude_patterns
        ).acquire()

        timestamp = self._now().strftime('%Y%m%d%H%M%S')
        self.mysql_source = create_mysql_source(self.settings, timestamp)

        if self.mysql_source is None:
            self._log("MySQL root password not set, MySQL backup skipped")
            return paths

        self._log("MySQL dump start")
        dumps = self.mysql_source.acquire()
        self._log("MySQL dump completed")

        return paths + dumps

    def _create_archive(self, source_paths: List[str]) -> str:
        """
        Create the tarball in the backup directory.

        Raises:
            CompressionError: If archive creation fails
        """
        os.makedirs(self.settings.backup_dir, exist_ok=True)

        filename = generate_archive_filename(self.settings.hostname, self._now())
        archive_path = os.path.join(self.settings.backup_dir, filename)

        self._log("Tar backup file start")
        create_archive(source_paths, archive_path)
        self._log("Tar backup file completed")

        return archive_path

    def _encrypt(self, archive_path: str) -> str:
        """
        Encrypt the tarball and delete the unencrypted copy.

        Raises:
            EncryptionError: If encryption fails
        """
        encrypted_path = f"{archive_path}.enc"

        self._log("Encrypt backup file start")
        ArchiveCipher(self.settings.encrypt_password).encrypt_file(archive_path, encrypted_path)
        self._log("Encrypt backup file completed")

        self._log(f"Delete unencrypted tar file: {archive_path}")
        os.remove(archive_path)

        return encrypted_path

    def _upload(self):
        """Upload the archive to every remote; one failure does not stop the rest."""
        for remote in self.remotes:
            self._log(f"Transferring backup file: {self.report.archive_path} to {remote.name}")
            try:
                remote_path = remote.upload(self.report.archive_path)
            except StorageError as e:
                self.report.upload_errors[remote.name] = str(e)
                self._log(
                    f"Error: Transferring backup file: {self.report.archive_path} "
                    f"to {remote.name} failed: {e}",
                    logging.ERROR
                )
                continue

            self.report.uploads[remote.name] = remote_path
            self._log(f"Transferring backup file to {remote.name} completed: {remote_path}")

    def _enforce_retention(self):
        manager = RetentionManager(self.settings, self.remotes, today=self.today)
        try:
            self.report.retention = manager.enforce()
        except (CatalogError, DeletionError) as e:
            self.report.retention_error = str(e)
            self._log(f"Retention enforcement failed: {e}", logging.ERROR)
        finally:
            self.report.logs.extend(manager.logs)

    def _cleanup_dumps(self):
        """Remove temporary MySQL dump files."""
        if self.mysql_source is None:
            return
        for sql in self.mysql_source.cleanup():
            self._log(f"Delete MySQL temporary dump file: {sql}")

    def _close_remotes(self):
        if self._owns_remotes:
            for remote in self.remotes:
                remote.close()

    def _now(self) -> datetime:
        if self.now is None:
            self.now = datetime.now()
        return self.now

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.report.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def execute_backup(settings, remotes: Optional[Sequence[RemoteStorage]] = None) -> BackupRunReport:
    """
    Run a full backup with the given settings.

    Returns:
        BackupRunReport
    """
    executor = BackupExecutor(settings, remotes)
    return executor.execute()
