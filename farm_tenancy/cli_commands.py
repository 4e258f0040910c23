"""
Flask CLI commands for tenant lifecycle operations.

Commands:
- flask init-db: Create all tables
- flask migrate-legacy SOURCE [--dry-run] [--tenant-id ID]: Import a legacy export
- flask expire-trials: Expire trials whose window has passed
"""

import click
from farm_tenancy.database import create_all
from farm_tenancy.exceptions import SaasError
from farm_tenancy.services.migration_service import ENTITIES, JsonLegacyStore, migrate
from farm_tenancy.services.subscription_service import expire_elapsed_trials


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        create_all()
        click.echo(click.style('✅ Database tables created', fg='green'))

    @app.cli.command('migrate-legacy')
    @click.argument('source', type=click.Path(exists=True, dir_okay=False))
    @click.option('--dry-run', is_flag=True, help='Preview changes without writing')
    @click.option('--tenant-id', default=None, help='Migrate this tenant only')
    def migrate_legacy(source, dry_run, tenant_id):
        """Copy tenant metadata from a legacy JSON export into the database."""
        try:
            legacy = JsonLegacyStore.from_path(source)
        except (OSError, ValueError, SaasError) as e:
            raise click.ClickException(f'Could not read legacy export: {e}')

        if dry_run:
            click.echo(click.style('🔍 DRY RUN - nothing will be written', fg='yellow'))

        summary = migrate(legacy, dry_run=dry_run, tenant_id=tenant_id)

        click.echo(f'\nTenants processed: {summary.tenants_processed}')
        for entity in ENTITIES:
            counts = summary.counts[entity]
            click.echo(f'   {entity:<14} created={counts["created"]:<5} updated={counts["updated"]}')

        if summary.errors:
            click.echo(click.style(f'\n❌ {len(summary.errors)} error(s):', fg='red'))
            for error in summary.errors:
                click.echo(f'   - {error}')
            raise SystemExit(1)

        click.echo(click.style('\n✅ Migration finished', fg='green', bold=True))

    @app.cli.command('expire-trials')
    def expire_trials():
        """Move elapsed trials to expired."""
        result = expire_elapsed_trials()
        click.echo(f'Expired trials: {len(result["expired"])}')
        for tenant_id in result['expired']:
            click.echo(f'   - {tenant_id}')
        if result['errors']:
            for error in result['errors']:
                click.echo(click.style(f'❌ {error}', fg='red'))
            raise SystemExit(1)
