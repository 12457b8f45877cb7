import os
import socket
from dataclasses import dataclass, fields
from typing import Optional, Tuple


class ConfigError(Exception):
    """Raised when the backup configuration is invalid."""
    pass


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f'LAMPBACKUP_{name}', default)


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ('true', '1', 'yes')


def _parse_int(name: str, value, default: int) -> int:
    if isinstance(value, int):
        return value
    if value is None or str(value).strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _env_list(name: str) -> Tuple[str, ...]:
    value = _env(name, '')
    return tuple(item.strip() for item in value.split(',') if item.strip())


class Config:
    """Base configuration"""

    # Storage locations
    BACKUP_DIR = _env('BACKUP_DIR') or '/media/m1/backups/'
    TEMP_DIR = _env('TEMP_DIR') or '/media/m1/backups/tmp/'
    LOG_FILE = _env('LOG_FILE') or '/media/m1/backups/backup.log'
    HOSTNAME = _env('HOSTNAME') or socket.gethostname()

    # Encryption
    # Decrypt with:
    # openssl enc -aes256 -in [encrypted backup] -out decrypted_backup.tgz -pass pass:[password] -d -md sha1
    ENCRYPT_FILES = _env_bool('ENCRYPT_FILES')
    ENCRYPT_PASSWORD = _env('ENCRYPT_PASSWORD')

    # What to back up (blank MySQL password skips the dump, blank database list dumps everything)
    MYSQL_ROOT_PASSWORD = _env('MYSQL_ROOT_PASSWORD', '')
    MYSQL_DATABASES = _env_list('MYSQL_DATABASES')
    BACKUP_PATHS = _env_list('BACKUP_PATHS')
    EXCLUDE_PATTERNS = _env_list('EXCLUDE_PATTERNS')

    # Retention
    KEEP_BACKUPS_FOR = _env('KEEP_BACKUPS_FOR', '7')
    KEEP_MONTHLY_BACKUPS_FOR = _env('KEEP_MONTHLY_BACKUPS_FOR', '6')
    DELETE_REMOTE_FILES = _env_bool('DELETE_REMOTE_FILES')

    # rclone (e.g. Google Drive)
    UPLOAD_RCLONE = _env_bool('UPLOAD_RCLONE')
    RCLONE_NAME = _env('RCLONE_NAME', '')
    RCLONE_FOLDER = _env('RCLONE_FOLDER', '')

    # FTP
    UPLOAD_FTP = _env_bool('UPLOAD_FTP')
    FTP_HOST = _env('FTP_HOST', '')
    FTP_USER = _env('FTP_USER', '')
    FTP_PASS = _env('FTP_PASS', '')
    FTP_DIR = _env('FTP_DIR', '')

    # SFTP
    UPLOAD_SFTP = _env_bool('UPLOAD_SFTP')
    SFTP_HOST = _env('SFTP_HOST', '')
    SFTP_PORT = _env('SFTP_PORT', '22')
    SFTP_USER = _env('SFTP_USER', '')
    SFTP_PASS = _env('SFTP_PASS', '')
    SFTP_KEY = _env('SFTP_KEY', '')
    SFTP_DIR = _env('SFTP_DIR', '')

    # S3
    UPLOAD_S3 = _env_bool('UPLOAD_S3')
    S3_BUCKET = _env('S3_BUCKET', '')
    S3_REGION = _env('S3_REGION', 'us-east-1')
    S3_PREFIX = _env('S3_PREFIX', '')
    AWS_ACCESS_KEY_ID = _env('AWS_ACCESS_KEY_ID', '')
    AWS_SECRET_ACCESS_KEY = _env('AWS_SECRET_ACCESS_KEY', '')

    # Scheduler (3:00AM every day)
    SCHEDULE_CRON = _env('SCHEDULE_CRON') or '0 3 * * *'
    SCHEDULER_TIMEZONE = 'UTC'

    DEBUG = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = _env('BACKUP_DIR') or os.path.join(DATA_DIR, 'backups')
    TEMP_DIR = _env('TEMP_DIR') or os.path.join(DATA_DIR, 'temp')
    LOG_FILE = _env('LOG_FILE') or os.path.join(DATA_DIR, 'logs', 'backup.log')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class Settings:
    """
    Immutable snapshot of the backup configuration for one run.

    Built once by load_settings() and handed to every component.
    """

    backup_dir: str
    temp_dir: str
    log_file: str
    hostname: str
    encrypt_files: bool = False
    encrypt_password: Optional[str] = None
    mysql_root_password: str = ''
    mysql_databases: Tuple[str, ...] = ()
    backup_paths: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()
    keep_backups_for: int = 7
    keep_monthly_backups_for: int = 6
    delete_remote_files: bool = False
    upload_rclone: bool = False
    rclone_name: str = ''
    rclone_folder: str = ''
    upload_ftp: bool = False
    ftp_host: str = ''
    ftp_user: str = ''
    ftp_pass: str = ''
    ftp_dir: str = ''
    upload_sftp: bool = False
    sftp_host: str = ''
    sftp_port: int = 22
    sftp_user: str = ''
    sftp_pass: str = ''
    sftp_key: str = ''
    sftp_dir: str = ''
    upload_s3: bool = False
    s3_bucket: str = ''
    s3_region: str = 'us-east-1'
    s3_prefix: str = ''
    aws_access_key_id: str = ''
    aws_secret_access_key: str = ''
    schedule_cron: str = '0 3 * * *'
    scheduler_timezone: str = 'UTC'
    debug: bool = False

    def __repr__(self):
        return (
            f'<Settings backup_dir={self.backup_dir} encrypt={self.encrypt_files} '
            f'daily={self.keep_backups_for} monthly={self.keep_monthly_backups_for}>'
        )

    @classmethod
    def from_object(cls, obj) -> 'Settings':
        """
        Build settings from a config class.

        Attribute names are matched case-insensitively against the
        dataclass fields; unknown attributes are ignored. Integer fields
        are converted here since config classes hold the raw environment
        strings.

        Args:
            obj: Config class (or any object with upper-case attributes)

        Returns:
            Settings instance

        Raises:
            ConfigError: If an integer field holds a non-integer value
        """
        values = {}
        for f in fields(cls):
            attr = f.name.upper()
            if hasattr(obj, attr):
                value = getattr(obj, attr)
                if isinstance(value, list):
                    value = tuple(value)
                elif f.type is int:
                    value = _parse_int(f'LAMPBACKUP_{attr}', value, f.default)
                values[f.name] = value
        return cls(**values)

    def validate(self) -> 'Settings':
        """
        Check the settings for inconsistent values.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigError: If a value is out of range or a required value is missing
        """
        if self.keep_backups_for < 0:
            raise ConfigError("KEEP_BACKUPS_FOR must be >= 0")
        if self.keep_monthly_backups_for < 0:
            raise ConfigError("KEEP_MONTHLY_BACKUPS_FOR must be >= 0")
        if not self.backup_dir:
            raise ConfigError("BACKUP_DIR can not be empty")

        if self.encrypt_files and not self.encrypt_password:
            raise ConfigError("ENCRYPT_PASSWORD can not be empty when ENCRYPT_FILES is enabled")

        required = []
        if self.upload_rclone:
            required.append(('RCLONE_NAME', self.rclone_name))
        if self.upload_ftp:
            required += [
                ('FTP_HOST', self.ftp_host),
                ('FTP_USER', self.ftp_user),
                ('FTP_PASS', self.ftp_pass),
                ('FTP_DIR', self.ftp_dir),
            ]
        if self.upload_sftp:
            required += [
                ('SFTP_HOST', self.sftp_host),
                ('SFTP_USER', self.sftp_user),
                ('SFTP_DIR', self.sftp_dir),
            ]
            if not self.sftp_pass and not self.sftp_key:
                raise ConfigError("Either SFTP_PASS or SFTP_KEY must be set when UPLOAD_SFTP is enabled")
        if self.upload_s3:
            required.append(('S3_BUCKET', self.s3_bucket))

        for name, value in required:
            if not value:
                raise ConfigError(f"{name} can not be empty!")

        return self


def load_settings(config_name: Optional[str] = None) -> Settings:
    """
    Load and validate settings for the named configuration.

    Args:
        config_name: 'development', 'production' or None (reads LAMPBACKUP_ENV)

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the configuration name is unknown or values are invalid
    """
    if config_name is None:
        config_name = os.environ.get('LAMPBACKUP_ENV', 'production')

    if config_name not in config:
        raise ConfigError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    return Settings.from_object(config[config_name]).validate()
