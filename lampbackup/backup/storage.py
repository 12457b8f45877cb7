"""
Storage handlers for backup archives.

Supports:
- LocalStorage: The local backup directory
- S3Storage: AWS S3 bucket
- RcloneStorage: Any rclone remote (e.g. Google Drive)
- FTPStorage: FTP server
- SFTPStorage: SFTP server

Remote handlers address archives by file name only; every archive of a
server lives side by side in one remote folder (or key prefix).
"""

import ftplib
import logging
import os
import shutil
import subprocess
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional

import boto3
import paramiko
from botocore.exceptions import ClientError, BotoCoreError
from paramiko import SSHClient, AutoAddPolicy

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class RemoteStorage:
    """
    Interface shared by every remote backend.

    The retention code only needs exists() and delete(); the backup
    executor also uses upload().
    """

    name = 'remote'

    def exists(self, filename: str) -> bool:
        raise NotImplementedError

    def delete(self, filename: str):
        raise NotImplementedError

    def upload(self, local_path: str) -> str:
        raise NotImplementedError

    def list_files(self) -> List[str]:
        raise NotImplementedError

    def close(self):
        """Release any open connection. Safe to call more than once."""
        pass

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.name}>'


class S3Storage(RemoteStorage):
    """
    Handler for backups kept in AWS S3.

    Objects are stored under ``{prefix}/{filename}``.
    """

    name = 's3'

    def __init__(self, bucket_name: str, region: str = 'us-east-1', prefix: str = '',
                 access_key: Optional[str] = None, secret_key: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            prefix: Key prefix the archives live under
            access_key: AWS access key ID (None uses the default credential chain)
            secret_key: AWS secret access key
        """
        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix.strip('/')

        client_kwargs = {'region_name': region}
        if access_key and secret_key:
            client_kwargs['aws_access_key_id'] = access_key
            client_kwargs['aws_secret_access_key'] = secret_key

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def _key(self, filename: str) -> str:
        return f"{self.prefix}/{filename}" if self.prefix else filename

    def upload(self, local_path: str) -> str:
        """
        Upload archive to S3.

        Args:
            local_path: Path to local archive file

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        s3_key = self._key(os.path.basename(local_path))

        try:
            # upload_file switches to multipart uploads for large archives
            self.s3_client.upload_file(local_path, self.bucket_name, s3_key)
            return s3_key
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def exists(self, filename: str) -> bool:
        """
        Check whether an archive exists in the bucket.

        Raises:
            StorageError: If the bucket cannot be queried
        """
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=self._key(filename))
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageError(f"S3 lookup failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to query S3: {e}")

    def delete(self, filename: str):
        """
        Delete an archive from S3.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=self._key(filename)
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_files(self) -> List[str]:
        """
        List archive names under the configured prefix.

        Raises:
            StorageError: If listing fails
        """
        prefix = f"{self.prefix}/" if self.prefix else ''

        try:
            names = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    name = obj['Key'][len(prefix):]
                    # Skip objects in nested "folders"
                    if name and '/' not in name:
                        names.append(name)

            return names

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")


class RcloneStorage(RemoteStorage):
    """
    Handler for any rclone remote, driven through the rclone CLI.

    Archives are stored in ``{remote_name}:{folder}``.
    """

    name = 'rclone'

    def __init__(self, remote_name: str, folder: str = '', timeout: int = 600,
                 rclone_binary: str = 'rclone'):
        if not remote_name:
            raise StorageError("rclone remote name can not be empty")

        self.remote_name = remote_name
        self.folder = folder.strip('/')
        self.timeout = timeout
        self.rclone_binary = rclone_binary

    @property
    def remote_root(self) -> str:
        return f"{self.remote_name}:{self.folder}"

    def _path(self, filename: str) -> str:
        if self.folder:
            return f"{self.remote_name}:{self.folder}/{filename}"
        return f"{self.remote_name}:{filename}"

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        """
        Run an rclone command.

        Returns:
            The completed process, whatever its exit code

        Raises:
            StorageError: If rclone is missing or the command times out
        """
        try:
            return subprocess.run(
                [self.rclone_binary, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise StorageError(f"{self.rclone_binary} is not installed")
        except subprocess.TimeoutExpired:
            raise StorageError(f"rclone {args[0]} timed out after {self.timeout}s")

    def upload(self, local_path: str) -> str:
        """
        Copy an archive to the remote folder, creating the folder if needed.

        Raises:
            StorageError: If the copy fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        if self.folder:
            result = self._run('lsf', self.remote_root)
            if result.returncode != 0:
                logger.info(f"Create the path {self.remote_root}")
                mkdir = self._run('mkdir', self.remote_root)
                if mkdir.returncode != 0:
                    raise StorageError(f"rclone mkdir {self.remote_root} failed: {mkdir.stderr.strip()}")

        result = self._run('copy', local_path, self.remote_root)
        if result.returncode != 0:
            raise StorageError(f"rclone copy failed: {result.stderr.strip()}")

        return self._path(os.path.basename(local_path))

    def exists(self, filename: str) -> bool:
        result = self._run('lsf', self._path(filename))
        return result.returncode == 0 and bool(result.stdout.strip())

    def delete(self, filename: str):
        result = self._run('deletefile', self._path(filename))
        if result.returncode != 0:
            raise StorageError(f"rclone deletefile failed: {result.stderr.strip()}")

    def list_files(self) -> List[str]:
        result = self._run('lsf', '--files-only', self.remote_root)
        if result.returncode != 0:
            raise StorageError(f"rclone lsf failed: {result.stderr.strip()}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


class FTPStorage(RemoteStorage):
    """
    Handler for backups kept on an FTP server.

    Opens one connection per operation; FTP servers tend to drop idle
    control connections between the upload and the cleanup phase.
    """

    name = 'ftp'

    def __init__(self, host: str, username: str, password: str, remote_dir: str,
                 port: int = 21, passive: bool = True, timeout: int = 30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.remote_dir = remote_dir
        self.passive = passive
        self.timeout = timeout

    def _connect(self) -> ftplib.FTP:
        """
        Connect, log in and change to the remote directory.

        Raises:
            StorageError: If any step fails
        """
        ftp = ftplib.FTP(timeout=self.timeout)
        try:
            ftp.connect(self.host, self.port)
            ftp.login(self.username, self.password)
            ftp.set_pasv(self.passive)
            ftp.cwd(self.remote_dir)
            return ftp
        except ftplib.all_errors as e:
            ftp.close()
            raise StorageError(f"FTP connection to {self.host} failed: {e}")

    def upload(self, local_path: str) -> str:
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        filename = os.path.basename(local_path)
        with self._connect() as ftp:
            try:
                with open(local_path, 'rb') as f:
                    ftp.storbinary(f'STOR {filename}', f)
            except ftplib.all_errors as e:
                raise StorageError(f"FTP upload of {filename} failed: {e}")

        return f"{self.remote_dir.rstrip('/')}/{filename}"

    def _nlst(self, ftp: ftplib.FTP) -> List[str]:
        try:
            return [os.path.basename(name) for name in ftp.nlst()]
        except ftplib.error_perm as e:
            # Many servers answer NLST on an empty directory with 550
            if str(e).startswith('550'):
                return []
            raise StorageError(f"FTP listing failed: {e}")
        except ftplib.all_errors as e:
            raise StorageError(f"FTP listing failed: {e}")

    def list_files(self) -> List[str]:
        with self._connect() as ftp:
            return self._nlst(ftp)

    def exists(self, filename: str) -> bool:
        """
        Check for one file with SIZE, falling back to a listing on servers
        that do not implement it.

        Raises:
            StorageError: If the server can not be queried
        """
        with self._connect() as ftp:
            try:
                ftp.voidcmd('TYPE I')
                ftp.size(filename)
                return True
            except ftplib.error_perm as e:
                if str(e).startswith('550'):
                    return False
                # 500/502: SIZE not implemented
            except ftplib.all_errors as e:
                raise StorageError(f"FTP size check of {filename} failed: {e}")

            return filename in self._nlst(ftp)

    def delete(self, filename: str):
        with self._connect() as ftp:
            try:
                ftp.delete(filename)
            except ftplib.all_errors as e:
                raise StorageError(f"FTP delete of {filename} failed: {e}")


class SFTPStorage(RemoteStorage):
    """
    Handler for backups kept on an SFTP server.

    The SSH connection is opened lazily and reused until close().
    """

    name = 'sftp'

    def __init__(self, host: str, username: str, remote_dir: str, port: int = 22,
                 password: Optional[str] = None, private_key: Optional[str] = None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.private_key_path = private_key
        self.remote_dir = remote_dir.rstrip('/') or '/'

        self.ssh_client = None
        self.sftp_client = None

    def _connect(self):
        """
        Establish SSH connection.

        Raises:
            StorageError: If connection fails
        """
        if self.sftp_client is not None:
            return self.sftp_client

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'username': self.username,
                'timeout': 30
            }

            if self.password:
                connect_kwargs['password'] = self.password
            elif self.private_key_path:
                key_path = Path(self.private_key_path).expanduser()
                if not key_path.exists():
                    raise StorageError(f"Private key not found: {self.private_key_path}")
                connect_kwargs['key_filename'] = str(key_path)
            else:
                raise StorageError("Either password or private_key must be provided")

            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()
            return self.sftp_client

        except StorageError:
            self.close()
            raise
        except paramiko.AuthenticationException as e:
            self.close()
            raise StorageError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise StorageError(f"SSH connection failed: {e}")
        except Exception as e:
            self.close()
            raise StorageError(f"Failed to connect to {self.host}: {e}")

    def _path(self, filename: str) -> str:
        return f"{self.remote_dir}/{filename}".replace('//', '/')

    def upload(self, local_path: str) -> str:
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        sftp = self._connect()
        remote_path = self._path(os.path.basename(local_path))
        try:
            sftp.put(local_path, remote_path)
        except Exception as e:
            raise StorageError(f"SFTP upload to {remote_path} failed: {e}")
        return remote_path

    def exists(self, filename: str) -> bool:
        sftp = self._connect()
        try:
            sftp.stat(self._path(filename))
            return True
        except FileNotFoundError:
            return False
        except Exception as e:
            raise StorageError(f"SFTP stat of {filename} failed: {e}")

    def delete(self, filename: str):
        sftp = self._connect()
        try:
            sftp.remove(self._path(filename))
        except Exception as e:
            raise StorageError(f"SFTP delete of {filename} failed: {e}")

    def list_files(self) -> List[str]:
        sftp = self._connect()
        try:
            return sftp.listdir(self.remote_dir)
        except Exception as e:
            raise StorageError(f"SFTP listing of {self.remote_dir} failed: {e}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing SFTP session: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing SSH connection: {e}")
            self.ssh_client = None


class LocalStorage:
    """
    Handler for the local backup directory.

    Archives sit directly in ``base_path``; there is no per-job nesting.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

    def is_accessible(self) -> bool:
        return self.base_path.is_dir() and os.access(self.base_path, os.R_OK | os.W_OK | os.X_OK)

    def delete(self, filename: str):
        """
        Delete a file from the backup directory.

        Raises:
            FileNotFoundError: If the file is already gone
            StorageError: If deletion fails
        """
        full_path = self.base_path / filename

        try:
            full_path.unlink()
        except FileNotFoundError:
            raise
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def list_files(self, pattern: str = '*') -> List[str]:
        """
        List file names in the backup directory matching a glob pattern.

        Raises:
            StorageError: If listing fails
        """
        try:
            return sorted(
                entry.name for entry in self.base_path.iterdir()
                if entry.is_file() and fnmatch(entry.name, pattern)
            )
        except PermissionError as e:
            raise StorageError(f"Permission denied listing {self.base_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")


def build_remotes(settings) -> List[RemoteStorage]:
    """
    Create a handler for every remote enabled in the settings.

    Args:
        settings: lampbackup.config.Settings

    Returns:
        Remote handlers in a fixed order: rclone, FTP, SFTP, S3. The rclone
        remote is left out when the rclone binary is not installed.
    """
    remotes = []

    if settings.upload_rclone:
        if shutil.which('rclone') is None:
            logger.warning("rclone is not installed, rclone remote skipped")
        else:
            remotes.append(RcloneStorage(settings.rclone_name, settings.rclone_folder))

    if settings.upload_ftp:
        remotes.append(FTPStorage(
            host=settings.ftp_host,
            username=settings.ftp_user,
            password=settings.ftp_pass,
            remote_dir=settings.ftp_dir
        ))

    if settings.upload_sftp:
        remotes.append(SFTPStorage(
            host=settings.sftp_host,
            port=settings.sftp_port,
            username=settings.sftp_user,
            password=settings.sftp_pass or None,
            private_key=settings.sftp_key or None,
            remote_dir=settings.sftp_dir
        ))

    if settings.upload_s3:
        remotes.append(S3Storage(
            bucket_name=settings.s3_bucket,
            region=settings.s3_region,
            prefix=settings.s3_prefix,
            access_key=settings.aws_access_key_id or None,
            secret_key=settings.aws_secret_access_key or None
        ))

    return remotes
