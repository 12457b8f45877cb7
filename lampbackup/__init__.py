import os
import logging
from logging.handlers import RotatingFileHandler

__version__ = '1.0.0'


def configure_logging(settings, level=None):
    """Configure application logging"""

    # Set log level based on environment
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO
    elif isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear handlers from a previous call
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    # File handler
    if settings.log_file:
        try:
            os.makedirs(os.path.dirname(os.path.abspath(settings.log_file)), exist_ok=True)
            file_handler = RotatingFileHandler(
                settings.log_file,
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
        except OSError as e:
            root_logger.warning(f"Could not set up file logging at {settings.log_file}: {e}")
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(
                '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            root_logger.addHandler(file_handler)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(level)})")
