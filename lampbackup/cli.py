"""Command-line interface for lampbackup."""

import sys
from datetime import datetime

import click

from lampbackup import configure_logging
from lampbackup.config import ConfigError, load_settings
from lampbackup.backup.catalog import CatalogError
from lampbackup.backup.deletion import DeletionError
from lampbackup.backup.executor import execute_backup
from lampbackup.backup.retention import enforce_retention_policy
from lampbackup.backup.storage import StorageError
from lampbackup.utils.crypto import ArchiveCipher, EncryptionError


@click.group()
@click.option('--config-name', '-c', default=None,
              type=click.Choice(['development', 'production', 'default']),
              help='Configuration to load (default: $LAMPBACKUP_ENV or production)')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.pass_context
def cli(ctx, config_name, log_level):
    """Back up databases and files, upload them and rotate old backups."""
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config_name)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    configure_logging(settings, log_level)
    ctx.obj['settings'] = settings


@cli.command()
@click.pass_context
def run(ctx):
    """Run a full backup: dump, archive, upload and clean up."""
    report = execute_backup(ctx.obj['settings'])

    if not report.succeeded:
        click.echo(f"Backup failed: {report.error_message}", err=True)
        sys.exit(1)

    click.echo(f"Backup written to {report.archive_path}")
    for remote, error in report.upload_errors.items():
        click.echo(f"Upload to {remote} failed: {error}", err=True)

    if report.retention_error:
        click.echo(f"Retention enforcement failed: {report.retention_error}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--dry-run', is_flag=True, help='Only show what would be deleted')
@click.option('--today', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
              help='Reference date for backup ages (default: today)')
@click.pass_context
def cleanup(ctx, dry_run, today):
    """Apply the retention policy to existing backups."""
    settings = ctx.obj['settings']
    reference = today.date() if today else None

    try:
        report = enforce_retention_policy(settings, today=reference, dry_run=dry_run)
    except (CatalogError, DeletionError, StorageError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not report.plan:
        click.echo("No backups to delete")

    if report.execution is None:
        for entry in report.plan:
            click.echo(f"Would delete {entry.reason} backup: {entry.name}")
    else:
        for outcome in report.execution.outcomes:
            click.echo(f"[{outcome.target}] {outcome.status}: {outcome.name} ({outcome.reason})")
        click.echo(f"Summary: {report.execution.summary()}")
        if report.execution.has_failures:
            sys.exit(1)


@cli.command()
@click.pass_context
def schedule(ctx):
    """Run backups on the configured cron schedule (blocks)."""
    from lampbackup.scheduler import init_scheduler, start_scheduler, stop_scheduler

    settings = ctx.obj['settings']

    try:
        init_scheduler(settings)
    except ValueError as e:
        click.echo(f"Invalid schedule '{settings.schedule_cron}': {e}", err=True)
        sys.exit(1)

    click.echo(f"Scheduler started ({settings.schedule_cron}), press Ctrl+C to exit")
    try:
        start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        stop_scheduler()


@cli.command()
@click.argument('source', type=click.Path(exists=True, dir_okay=False))
@click.argument('destination', type=click.Path(dir_okay=False))
@click.option('--password', envvar='LAMPBACKUP_ENCRYPT_PASSWORD', prompt=True, hide_input=True,
              help='Encryption password')
def decrypt(source, destination, password):
    """Decrypt an encrypted backup archive."""
    started = datetime.now()
    try:
        ArchiveCipher(password).decrypt_file(source, destination)
    except EncryptionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    elapsed = (datetime.now() - started).total_seconds()
    click.echo(f"Decrypted {source} -> {destination} in {elapsed:.1f}s")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
