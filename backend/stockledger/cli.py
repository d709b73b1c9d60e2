# Overview: Flask CLI command groups for bootstrap, ledger checks, backups and remote sync.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables and the default config row (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger:
# - python -m flask ledger verify
#   List products whose cached quantity disagrees with their movements.
#
# Local backups:
# - python -m flask backup export [--output-dir backups]
# - python -m flask backup import stockledger-backup-2026-10-18.json --yes
#
# Remote replica (Google Drive access token, or env DRIVE_ACCESS_TOKEN):
# - python -m flask sync push --token <token>
# - python -m flask sync check --token <token>
# - python -m flask sync pull --token <token> [--force] --yes

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import inventory_service, settings_service, snapshot_service
from .services.sync_service import SyncError, get_synchronizer
from .validation import ValidationError, NotFoundError
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create any missing tables and the default shop configuration."""
    click.echo("START Initializing stockledger...")
    db.create_all()
    cfg = settings_service.get_config()
    click.echo(f"PASS Shop: {cfg.shop_name} ({cfg.currency_symbol})")
    click.echo(f"PASS Categories: {', '.join(cfg.categories or [])}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger_cli():
    """Exit 1 if any product quantity has drifted from its movements."""
    drift = inventory_service.verify_ledger()
    if not drift:
        click.echo("PASS Every product quantity matches its ledger.")
        return
    for row in drift:
        click.echo(
            f"FAIL {row['name']} ({row['product_id']}): "
            f"quantity={row['quantity']} ledger={row['ledger_quantity']}"
        )
    raise SystemExit(1)


@click.group('backup')
def backup_group():
    """Local JSON backup files."""


@backup_group.command('export')
@click.option('--output-dir', type=click.Path(file_okay=False), default=None,
              help='Directory for the backup file (default: BACKUP_DIR)')
@with_appcontext
def export_backup_cli(output_dir):
    path = snapshot_service.export_backup(output_dir)
    click.echo(f"PASS Wrote {path}")


@backup_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def import_backup_cli(path, yes):
    """Replace local data with an exported backup file."""
    if not yes:
        click.confirm("WARN This replaces local data with the backup. Continue?", abort=True)
    try:
        snapshot = snapshot_service.import_backup(path)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Restored backup taken at {snapshot.timestamp}")


@click.group('sync')
def sync_group():
    """Remote replica (Google Drive) commands."""


_token_option = click.option(
    '--token', envvar='DRIVE_ACCESS_TOKEN', required=True,
    help='Google Drive OAuth access token',
)


@sync_group.command('push')
@_token_option
@with_appcontext
def sync_push_cli(token):
    sync = get_synchronizer()
    try:
        with sync.make_remote(token) as remote:
            remote_file = sync.push(remote)
    except SyncError as e:
        raise click.ClickException(str(e))
    cfg = settings_service.get_config()
    click.echo(f"PASS Pushed to {remote_file.id} at {to_utc_z(cfg.last_sync)}")


@sync_group.command('check')
@_token_option
@with_appcontext
def sync_check_cli(token):
    sync = get_synchronizer()
    try:
        with sync.make_remote(token) as remote:
            decision = sync.check_remote_newer(remote)
    except SyncError as e:
        raise click.ClickException(str(e))
    if decision is None:
        click.echo("PASS Local data is up to date with the remote backup.")
    else:
        click.echo(
            f"WARN Remote backup {decision.file_id} modified "
            f"{to_utc_z(decision.remote_modified_at)} is newer than last sync "
            f"{to_utc_z(decision.last_sync) or 'never'}."
        )


@sync_group.command('pull')
@_token_option
@click.option('--force', is_flag=True, help='Restore even if the remote is not newer')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def sync_pull_cli(token, force, yes):
    """Replace local data with the remote backup."""
    sync = get_synchronizer()
    try:
        with sync.make_remote(token) as remote:
            decision = sync.request_restore(remote) if force else sync.check_remote_newer(remote)
            if decision is None:
                click.echo("PASS Remote backup is not newer; nothing to restore.")
                return
            if not yes:
                click.confirm(
                    f"WARN Replace local data with remote backup from "
                    f"{to_utc_z(decision.remote_modified_at)}?",
                    abort=True,
                )
            snapshot = sync.pull(remote, decision)
    except (SyncError, NotFoundError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Restored snapshot taken at {snapshot.timestamp}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(backup_group)
    app.cli.add_command(sync_group)
