"""
Creation dates embedded in backup file names.

Backup archives are named ``<host>_<YYYYMMDDhhmmss>.tgz`` (``.tgz.enc`` when
encrypted). The date is read from the segment after the first underscore.

Ages are measured on an approximate calendar where every year has 365 days
and every month 30 days. KEEP_BACKUPS_FOR is interpreted on that calendar.
"""

import re
from datetime import date
from typing import Optional

_DIGITS = re.compile(r'[0-9]+')


def _timestamp_segment(name: str) -> Optional[str]:
    """Return the text between the first '_' and the next '_' or '.'."""
    _, sep, rest = name.partition('_')
    if not sep:
        return None
    return re.split(r'[._]', rest, maxsplit=1)[0]


def parse_backup_date(name: str) -> Optional[date]:
    """
    Parse the creation date embedded in a backup file name.

    Args:
        name: File base name, e.g. ``web01_20240612030000.tgz``

    Returns:
        The embedded date, or None when the name does not carry one
    """
    segment = _timestamp_segment(name)
    if segment is None or len(segment) < 8:
        return None

    if not _DIGITS.fullmatch(segment[:8]):
        return None

    try:
        return date(int(segment[0:4]), int(segment[4:6]), int(segment[6:8]))
    except ValueError:
        return None


def parse_backup_timestamp(name: str) -> Optional[str]:
    """
    Return the full timestamp digits embedded in a backup file name.

    Only defined when the name carries a valid date. Used to order several
    backups taken on the same day.
    """
    if parse_backup_date(name) is None:
        return None
    return _DIGITS.match(_timestamp_segment(name)).group(0)


def approximate_days(d: date) -> int:
    """Day number of ``d`` on the 365-day-year, 30-day-month calendar."""
    return d.year * 365 + d.month * 30 + d.day


def approximate_age_days(d: date, today: date) -> int:
    """
    Approximate age of a backup created on ``d``, as seen on ``today``.

    Example:
        2024-06-04 seen on 2024-06-12 is 8 days old.
    """
    return approximate_days(today) - approximate_days(d)
