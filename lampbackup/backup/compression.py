"""
Archive creation for backups.

Every backup is a single gzip-compressed tarball named
``<host>_<YYYYMMDDhhmmss>.tgz``. Absolute source paths are stored without
their leading slash, so extracting with ``tar -xvzf`` under ``/`` restores
files in place.
"""

import os
import tarfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


ARCHIVE_EXTENSION = 'tgz'


def create_archive(source_paths: List[str], archive_path: str) -> str:
    """
    Create a gzip-compressed tarball from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        archive_path: Full path of the archive to create

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    try:
        with tarfile.open(archive_path, 'w:gz') as tar:
            for source_path in source_paths:
                source = Path(source_path)

                if not source.exists():
                    raise CompressionError(f"Path does not exist: {source_path}")

                # tarfile drops the leading '/' from arcnames
                tar.add(str(source.absolute()), recursive=True)

        return archive_path

    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        if isinstance(e, CompressionError):
            raise
        raise CompressionError(f"Failed to create archive: {e}")


def generate_archive_filename(hostname: str, now: Optional[datetime] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: {hostname}_{YYYYMMDDhhmmss}.tgz

    Underscores in the host name are replaced with dashes because the
    date is read from the text after the first underscore.

    Args:
        hostname: Name of the backed up server
        now: Timestamp to embed (default: now)

    Returns:
        Filename (without path)
    """
    timestamp = (now or datetime.now()).strftime('%Y%m%d%H%M%S')

    safe_hostname = "".join(
        c if c.isalnum() or c in ('-', '.') else '-'
        for c in hostname
    ) or 'backup'

    return f"{safe_hostname}_{timestamp}.{ARCHIVE_EXTENSION}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")


def format_size(path: str) -> str:
    """Human readable size of a file (like ``du -h``), or 'unknown'."""
    try:
        size = float(os.path.getsize(path))
    except OSError:
        return 'unknown'

    for unit in ('B', 'K', 'M', 'G', 'T'):
        if size < 1024 or unit == 'T':
            return f"{size:.0f}{unit}" if unit == 'B' else f"{size:.1f}{unit}"
        size /= 1024
