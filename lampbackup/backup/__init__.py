"""
Backup module for lampbackup.

This module handles the core backup functionality including:
- Backup file catalog and embedded creation dates
- Retention policy planning and enforcement
- Sources (local paths and MySQL dumps)
- Compression
- Storage (local directory, rclone, FTP, SFTP and S3)
- Execution orchestration
"""

from .catalog import BackupFile, CatalogError, scan
from .retention import RetentionPolicy, DeletionPlan, RetentionManager, plan_retention
from .deletion import DeletionExecutor, ExecutionReport
from .executor import BackupExecutor
from .storage import LocalStorage, S3Storage, RcloneStorage, FTPStorage, SFTPStorage

__all__ = [
    'BackupFile',
    'CatalogError',
    'scan',
    'RetentionPolicy',
    'DeletionPlan',
    'RetentionManager',
    'plan_retention',
    'DeletionExecutor',
    'ExecutionReport',
    'BackupExecutor',
    'LocalStorage',
    'S3Storage',
    'RcloneStorage',
    'FTPStorage',
    'SFTPStorage'
]
