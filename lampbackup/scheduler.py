"""
APScheduler configuration for the daily backup run.

Runs the full backup (dump, archive, upload, retention) on the cron
schedule from the settings, one run at a time.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from lampbackup.backup.executor import execute_backup

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'daily_backup'

# Global scheduler instance
scheduler = None


def run_scheduled_backup(settings):
    """Job function: run one backup and log its outcome."""
    report = execute_backup(settings)
    if report.succeeded:
        logger.info(f"Scheduled backup completed: {report.archive_path}")
        if report.retention_error:
            logger.error(f"Scheduled retention failed: {report.retention_error}")
    else:
        logger.error(f"Scheduled backup failed: {report.error_message}")
    return report


def init_scheduler(settings):
    """
    Initialize and configure APScheduler.

    Args:
        settings: lampbackup.config.Settings

    Returns:
        The scheduler instance

    Raises:
        ValueError: If the cron expression is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never run two backups at once
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    trigger = CronTrigger.from_crontab(settings.schedule_cron, timezone=settings.scheduler_timezone)

    scheduler = BlockingScheduler(
        job_defaults=job_defaults,
        timezone=settings.scheduler_timezone
    )

    scheduler.add_job(
        func=run_scheduled_backup,
        trigger=trigger,
        args=[settings],
        id=BACKUP_JOB_ID,
        name='Daily Backup',
        replace_existing=True
    )

    logger.info(f"Backup scheduled with cron expression '{settings.schedule_cron}'")
    return scheduler


def start_scheduler():
    """
    Start the APScheduler. Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        logger.info(f"  - {job.id}: {job.name} (next run: {next_run.isoformat() if next_run else 'N/A'})")

    scheduler.start()


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")

    scheduler = None


def get_scheduled_jobs() -> list:
    """
    Get information about scheduled jobs.

    Returns:
        List of dicts with 'id', 'name' and 'next_run_time'
    """
    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run_time': next_run.isoformat() if next_run else None
        })
    return jobs
