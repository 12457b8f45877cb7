"""
Unit tests for retention policy management (lampbackup/backup/retention.py).

Tests plan_retention() for the daily/monthly rules and RetentionManager
for the scan -> plan -> delete cycle.
"""

from datetime import date

import pytest
from freezegun import freeze_time

from lampbackup.backup.catalog import BackupFile, CatalogError, scan
from lampbackup.backup.deletion import DELETED, NOT_FOUND
from lampbackup.backup.retention import (
    DAILY,
    MONTHLY,
    RetentionPolicy,
    RetentionManager,
    enforce_retention_policy,
    plan_retention
)

TODAY = date(2024, 6, 12)


def backups(*names):
    return [BackupFile.from_name(name) for name in names]


class TestRetentionPolicy:
    """Test RetentionPolicy validation."""

    def test_defaults(self):
        policy = RetentionPolicy()
        assert policy.keep_daily_for_days == 7
        assert policy.keep_monthly_count == 6

    def test_zero_is_allowed(self):
        policy = RetentionPolicy(0, 0)
        assert policy.keep_daily_for_days == 0
        assert policy.keep_monthly_count == 0

    @pytest.mark.parametrize('daily, monthly', [(-1, 6), (7, -1)])
    def test_negative_values_rejected(self, daily, monthly):
        with pytest.raises(ValueError):
            RetentionPolicy(daily, monthly)

    def test_from_settings(self, make_settings):
        policy = RetentionPolicy.from_settings(
            make_settings(keep_backups_for=14, keep_monthly_backups_for=3)
        )
        assert policy == RetentionPolicy(14, 3)


class TestDailyRule:
    """Test age-based deletion of daily backups."""

    def test_old_daily_deleted_recent_kept(self):
        files = backups('host_2024060400.tgz', 'host_2024060600.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 6), TODAY)

        assert plan.names == ['host_2024060400.tgz']
        assert [entry.reason for entry in plan] == [DAILY]
        assert [b.name for b in plan.kept] == ['host_2024060600.tgz']

    def test_age_equal_to_window_is_kept(self):
        # 2024-06-05 is exactly 7 days before 2024-06-12
        files = backups('web01_20240605030000.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 6), TODAY)

        assert len(plan) == 0

    def test_zero_window_keeps_same_day_backup(self):
        files = backups('web01_20240612030000.tgz', 'web01_20240611030000.tgz')

        plan = plan_retention(files, RetentionPolicy(0, 6), TODAY)

        assert plan.names == ['web01_20240611030000.tgz']

    def test_no_count_cap_on_daily_backups(self):
        names = [f'web01_202406{day:02d}030000.tgz' for day in range(2, 13)]

        plan = plan_retention(backups(*names), RetentionPolicy(30, 6), TODAY)

        assert len(plan) == 0
        assert len(plan.kept) == 11

    def test_daily_deletions_in_name_order(self):
        files = backups('web01_20240503030000.tgz', 'web01_20240402030000.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 6), TODAY)

        assert plan.names == ['web01_20240402030000.tgz', 'web01_20240503030000.tgz']

    def test_approximate_calendar_is_used(self):
        """May 31st seen on June 8th is 7 approximate days old (8 real days)."""
        files = backups('web01_20240531030000.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 6), date(2024, 6, 8))

        assert len(plan) == 0

    def test_monotonic_in_window(self):
        names = [f'web01_2024{month:02d}{day:02d}030000.tgz'
                 for month in (4, 5, 6) for day in (2, 10, 20, 28)]
        files = backups(*names)

        previous = None
        for window in range(0, 90, 5):
            deleted = set(plan_retention(files, RetentionPolicy(window, 6), TODAY).names_for(DAILY))
            if previous is not None:
                assert deleted <= previous
            previous = deleted


class TestMonthlyRule:
    """Test count-based deletion of monthly backups."""

    def test_keeps_most_recent(self):
        files = backups(
            'web01_20240101030000.tgz',
            'web01_20240201030000.tgz',
            'web01_20240301030000.tgz',
            'web01_20240401030000.tgz',
        )

        plan = plan_retention(files, RetentionPolicy(7, 2), TODAY)

        assert sorted(plan.names_for(MONTHLY)) == [
            'web01_20240101030000.tgz',
            'web01_20240201030000.tgz',
        ]
        assert plan.names_for(DAILY) == []

    def test_monthly_kept_regardless_of_age(self):
        files = backups('web01_20200101030000.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 6), TODAY)

        assert len(plan) == 0
        assert [b.name for b in plan.kept] == ['web01_20200101030000.tgz']

    def test_zero_count_deletes_all_monthly(self):
        files = backups('web01_20240601030000.tgz', 'web01_20240501030000.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 0), TODAY)

        assert sorted(plan.names) == ['web01_20240501030000.tgz', 'web01_20240601030000.tgz']

    @pytest.mark.parametrize('keep', [0, 1, 3, 5, 8])
    def test_exact_cap(self, keep):
        names = [f'web01_2024{month:02d}01030000.tgz' for month in range(1, 6)]

        plan = plan_retention(backups(*names), RetentionPolicy(7, keep), TODAY)

        deleted = plan.names_for(MONTHLY)
        assert len(deleted) == max(0, 5 - keep)
        # Always the oldest ones
        assert sorted(deleted) == sorted(names)[:len(deleted)]

    def test_same_day_backups_ordered_by_timestamp(self):
        files = backups(
            'web01_20240601230000.tgz',
            'web01_20240601030000.tgz',
            'web01_20240501030000.tgz',
        )

        plan = plan_retention(files, RetentionPolicy(7, 1), TODAY)

        assert plan.names_for(MONTHLY) == [
            'web01_20240601030000.tgz',
            'web01_20240501030000.tgz',
        ]

    def test_order_uses_date_not_host_name(self):
        files = backups('zeta_20240101030000.tgz', 'alpha_20240501030000.tgz')

        plan = plan_retention(files, RetentionPolicy(7, 1), TODAY)

        assert plan.names == ['zeta_20240101030000.tgz']


class TestPlanEdgeCases:
    """Test unknown dates, empty input and mixed catalogs."""

    def test_empty_input(self):
        plan = plan_retention([], RetentionPolicy(7, 6), TODAY)

        assert len(plan) == 0
        assert not plan
        assert plan.kept == []
        assert plan.unknown == []

    def test_unparseable_names_never_planned(self):
        files = backups('manual.tgz', 'web01_garbage.tgz', 'web01_20241301000000.tgz')

        plan = plan_retention(files, RetentionPolicy(0, 0), TODAY)

        assert len(plan) == 0
        assert [b.name for b in plan.unknown] == [b.name for b in files]

    def test_mixed_catalog(self):
        files = backups(
            'web01_20240612030000.tgz',
            'web01_20240601030000.tgz',
            'web01_20240515030000.tgz',
            'web01_20240501030000.tgz',
            'web01_20240401030000.tgz',
            'old-export.tgz',
        )

        plan = plan_retention(files, RetentionPolicy(7, 2), TODAY)

        assert plan.names == [
            'web01_20240515030000.tgz',
            'web01_20240401030000.tgz',
        ]
        assert [entry.reason for entry in plan] == [DAILY, MONTHLY]
        assert [b.name for b in plan.unknown] == ['old-export.tgz']

    def test_plan_does_not_mutate_input(self):
        files = backups('web01_20240101030000.tgz', 'web01_20240301030000.tgz')
        snapshot = list(files)

        plan_retention(files, RetentionPolicy(7, 0), TODAY)

        assert files == snapshot


class TestRetentionManager:
    """Test the scan -> plan -> delete cycle."""

    def test_enforce_deletes_planned_files(self, make_settings, backup_dir, touch_backups):
        touch_backups(backup_dir, [
            'host_2024060400.tgz',
            'host_2024060600.tgz',
            'notes.tgz',
        ])
        settings = make_settings(keep_backups_for=7)

        report = RetentionManager(settings, today=TODAY).enforce()

        assert report.plan.names == ['host_2024060400.tgz']
        assert report.execution.deleted == 1
        assert sorted(p.name for p in backup_dir.iterdir()) == ['host_2024060600.tgz', 'notes.tgz']

    def test_dry_run_deletes_nothing(self, make_settings, backup_dir, touch_backups):
        names = touch_backups(backup_dir, ['web01_20240101030000.tgz', 'web01_20240102030000.tgz'])

        report = RetentionManager(make_settings(), today=TODAY).enforce(dry_run=True)

        assert report.dry_run
        assert report.execution is None
        assert report.plan.names == ['web01_20240102030000.tgz']
        assert sorted(p.name for p in backup_dir.iterdir()) == sorted(names)

    def test_encrypted_mode_only_sees_enc_files(self, make_settings, backup_dir, touch_backups):
        touch_backups(backup_dir, ['web01_20240102030000.tgz', 'web01_20240102030000.tgz.enc'])
        settings = make_settings(encrypt_files=True, encrypt_password='secret')

        report = RetentionManager(settings, today=TODAY).enforce()

        assert report.plan.names == ['web01_20240102030000.tgz.enc']
        assert (backup_dir / 'web01_20240102030000.tgz').exists()

    def test_idempotent(self, make_settings, backup_dir, touch_backups):
        touch_backups(backup_dir, [f'web01_2024{m:02d}01030000.tgz' for m in range(1, 7)] +
                      ['web01_20240520030000.tgz', 'web01_20240610030000.tgz'])
        settings = make_settings(keep_monthly_backups_for=2)

        first = RetentionManager(settings, today=TODAY).enforce()
        second = RetentionManager(settings, today=TODAY).enforce()

        assert len(first.plan) == 5
        assert len(second.plan) == 0
        assert set(first.plan.names).isdisjoint(b.name for b in scan(str(backup_dir), 'tgz'))

    def test_remote_deletion_when_enabled(self, make_settings, backup_dir, touch_backups, make_remote):
        touch_backups(backup_dir, ['web01_20240102030000.tgz'])
        remote = make_remote('gdrive', files=['web01_20240102030000.tgz'])
        settings = make_settings(delete_remote_files=True)

        report = RetentionManager(settings, [remote], today=TODAY).enforce()

        assert remote.deleted == ['web01_20240102030000.tgz']
        assert [o.status for o in report.execution.for_target('gdrive')] == [DELETED]

    def test_remote_untouched_when_disabled(self, make_settings, backup_dir, touch_backups, make_remote):
        touch_backups(backup_dir, ['web01_20240102030000.tgz'])
        remote = make_remote('gdrive', files=['web01_20240102030000.tgz'])

        report = RetentionManager(make_settings(), [remote], today=TODAY).enforce()

        assert remote.deleted == []
        assert report.execution.for_target('gdrive') == []

    def test_remote_missing_file_reported(self, make_settings, backup_dir, touch_backups, make_remote):
        touch_backups(backup_dir, ['web01_20240102030000.tgz'])
        remote = make_remote('ftp')
        settings = make_settings(delete_remote_files=True)

        report = RetentionManager(settings, [remote], today=TODAY).enforce()

        assert [o.status for o in report.execution.for_target('ftp')] == [NOT_FOUND]

    def test_missing_backup_directory(self, make_settings, tmp_path):
        settings = make_settings(backup_dir=str(tmp_path / 'missing'))

        with pytest.raises(CatalogError):
            RetentionManager(settings, today=TODAY).enforce()

    def test_logs_every_classification(self, make_settings, backup_dir, touch_backups):
        touch_backups(backup_dir, [
            'web01_20240102030000.tgz',
            'web01_20240611030000.tgz',
            'other.tgz',
        ])

        manager = RetentionManager(make_settings(), today=TODAY)
        manager.enforce()

        assert any('Enforcing retention policy' in log for log in manager.logs)
        assert any('other.tgz has no embedded date' in log for log in manager.logs)
        assert any('Keep daily backup file name: web01_20240611030000.tgz' in log for log in manager.logs)
        assert any('Delete daily backup file name: web01_20240102030000.tgz' in log for log in manager.logs)
        assert any('has been deleted' in log for log in manager.logs)
        assert all(log.startswith('[') for log in manager.logs)

    @freeze_time("2024-06-12")
    def test_defaults_to_current_date(self, make_settings, backup_dir, touch_backups):
        touch_backups(backup_dir, ['host_2024060400.tgz', 'host_2024060600.tgz'])

        report = RetentionManager(make_settings()).enforce(dry_run=True)

        assert report.plan.names == ['host_2024060400.tgz']


class TestEnforceRetentionPolicy:
    """Test the module-level entry point."""

    def test_uses_given_remotes_without_closing(self, make_settings, backup_dir, touch_backups, make_remote):
        touch_backups(backup_dir, ['web01_20240102030000.tgz'])
        remote = make_remote('s3', files=['web01_20240102030000.tgz'])
        settings = make_settings(delete_remote_files=True)

        report = enforce_retention_policy(settings, [remote], today=TODAY)

        assert report.execution.deleted == 2
        assert not remote.closed

    def test_builds_and_closes_remotes(self, make_settings, backup_dir, make_remote, monkeypatch):
        remote = make_remote('sftp')
        monkeypatch.setattr('lampbackup.backup.retention.build_remotes', lambda settings: [remote])

        enforce_retention_policy(make_settings(), today=TODAY)

        assert remote.closed
