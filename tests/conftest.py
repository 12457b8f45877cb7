"""
Shared pytest fixtures for lampbackup tests.

This module provides fixtures for:
- Settings pointing at temporary directories
- Backup directories populated with archive files
- An in-memory remote storage double
- Mock fixtures for external services (S3, SSH)
"""

from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from lampbackup.config import Settings
from lampbackup.backup.storage import RemoteStorage, StorageError


class FakeRemote(RemoteStorage):
    """
    In-memory remote store.

    Args:
        name: Remote name used in outcomes
        files: Initial file names
        fail_on: File names whose exists()/delete() raise StorageError
        unavailable: Every call raises StorageError
    """

    def __init__(self, name='fake', files=(), fail_on=(), unavailable=False):
        self.name = name
        self.files = set(files)
        self.fail_on = set(fail_on)
        self.unavailable = unavailable
        self.uploaded = []
        self.deleted = []
        self.closed = False

    def _check(self, filename=None):
        if self.unavailable:
            raise StorageError(f"{self.name} is unavailable")
        if filename in self.fail_on:
            raise StorageError(f"{self.name} refused {filename}")

    def exists(self, filename):
        self._check(filename)
        return filename in self.files

    def delete(self, filename):
        self._check(filename)
        self.files.discard(filename)
        self.deleted.append(filename)

    def upload(self, local_path):
        self._check()
        name = local_path.rsplit('/', 1)[-1]
        self.files.add(name)
        self.uploaded.append(local_path)
        return f"{self.name}:{name}"

    def list_files(self):
        self._check()
        return sorted(self.files)

    def close(self):
        self.closed = True


@pytest.fixture
def backup_dir(tmp_path):
    """Empty backup directory."""
    directory = tmp_path / 'backups'
    directory.mkdir()
    return directory


@pytest.fixture
def make_settings(tmp_path, backup_dir):
    """
    Factory for Settings pointing at temporary directories.

    Keyword arguments override individual fields.
    """
    def _make(**overrides):
        values = {
            'backup_dir': str(backup_dir),
            'temp_dir': str(tmp_path / 'tmp'),
            'log_file': str(tmp_path / 'logs' / 'backup.log'),
            'hostname': 'web01',
            'keep_backups_for': 7,
            'keep_monthly_backups_for': 6,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    """Default settings: 7 daily days, 6 monthly backups, no remotes."""
    return make_settings()


@pytest.fixture
def touch_backups():
    """
    Create empty archive files in a directory.

    Usage: touch_backups(backup_dir, ['web01_20240601030000.tgz', ...])
    """
    def _touch(directory, names):
        for name in names:
            (directory / name).write_bytes(b'backup')
        return names

    return _touch


@pytest.fixture
def fake_remote():
    """Remote store holding nothing yet."""
    return FakeRemote()


@pytest.fixture
def make_remote():
    """Factory for FakeRemote instances with custom contents or failures."""
    return FakeRemote


@pytest.fixture
def source_files(tmp_path):
    """
    Create files to back up.

    Creates:
    - www/index.html
    - www/assets/app.js
    - etc/fstab
    - www/cache.tmp (excluded in tests)
    """
    www = tmp_path / 'www'
    (www / 'assets').mkdir(parents=True)
    (www / 'index.html').write_text('<html></html>')
    (www / 'assets' / 'app.js').write_text('console.log(1)')
    (www / 'cache.tmp').write_text('cache')

    etc = tmp_path / 'etc'
    etc.mkdir()
    (etc / 'fstab').write_text('/dev/sda1 / ext4 defaults 0 1')

    return tmp_path


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP testing.

    Returns the patched class; its return_value.open_sftp() is a MagicMock.
    """
    with patch('lampbackup.backup.storage.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh
