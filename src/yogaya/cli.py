#!/usr/bin/env python3
"""
Command Line Interface for yogaya

Onboards cloud credentials into cloud_accounts.conf and generates Terraform
files for every stored account.
"""

import click
import logging
import sys
from pathlib import Path
from tabulate import tabulate

from . import __version__
from .accounts import AccountStore, SUPPORTED_PROVIDERS
from .config import ConfigManager, DEFAULT_CONFIG_TEMPLATE, setup_logging
from .merger import merge_region_tree
from .orchestrator import ImportOrchestrator
from .workspace import init_workspace

logger = logging.getLogger(__name__)


def _load_config(ctx, **cli_args):
    """Load tool configuration and configure logging from it"""
    config_manager = ConfigManager()
    cli_args.update({
        'verbose': ctx.obj.get('verbose', False),
        'quiet': ctx.obj.get('quiet', False)
    })
    config = config_manager.load_config(
        config_file=ctx.obj.get('config_file'),
        cli_args=cli_args
    )
    setup_logging(config.logging)
    return config


def _fail(e: Exception):
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Tool configuration file path')
@click.option('--verbose', '-v', is_flag=True,
              help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True,
              help='Enable quiet mode (warnings and errors only)')
@click.pass_context
def cli(ctx, config, verbose, quiet):
    """
    yogaya

    Stores AWS, GCP and Azure credentials and turns the live resources of each
    account into Terraform configuration using Terraformer.
    """
    ctx.ensure_object(dict)

    ctx.obj['config_file'] = config
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet


@cli.command()
@click.argument('path', required=False, type=click.Path(file_okay=False))
@click.option('--force', is_flag=True,
              help='Overwrite existing tenant.conf and cloud_accounts.conf')
@click.pass_context
def init(ctx, path, force):
    """
    Initialize the .yogaya workspace

    Creates PATH/.yogaya (PATH defaults to your home directory) with a tenant
    key, an empty account store and a git repository.
    """
    try:
        _load_config(ctx)
        result = init_workspace(path, force=force)

        if not result.git_initialized:
            click.echo("Warning: git init failed. Please install Git and re-run init.", err=True)

        click.echo(f"Initialized yogaya workspace at {result.path}")
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument('provider', type=click.Choice(SUPPORTED_PROVIDERS))
@click.argument('config_path', type=click.Path(dir_okay=False))
@click.argument('credentials_file', required=False)
@click.option('--profile', default='default', show_default=True,
              help='AWS credentials profile to read')
@click.option('--skip-validation', is_flag=True,
              help='Store the credentials without contacting the provider')
@click.pass_context
def add(ctx, provider, config_path, credentials_file, profile, skip_validation):
    """
    Add cloud credentials to the account store

    CREDENTIALS_FILE is an AWS shared credentials file or a GCP service
    account key. Azure reads the logged-in `az` CLI session instead.
    """
    try:
        _load_config(ctx)
        if provider != 'azure' and not credentials_file:
            raise ValueError(f"CREDENTIALS_FILE is required for {provider}")

        store = AccountStore.load(config_path)
        account = store.add_credentials(
            provider,
            credentials_file,
            validate_credentials=not skip_validation,
            profile=profile
        )

        click.echo(f"Successfully added {provider} account {account.id}")
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--output-dir', '-o', help='Directory generated files are written to')
@click.option('--max-workers', type=click.IntRange(min=1),
              help='Regions imported concurrently per account')
@click.option('--provider', 'providers', multiple=True,
              type=click.Choice(SUPPORTED_PROVIDERS),
              help='Only generate for this provider (repeatable)')
@click.option('--account', 'account_ids', multiple=True,
              help='Only generate for this account ID (repeatable)')
@click.pass_context
def generate(ctx, config_path, output_dir, max_workers, providers, account_ids):
    """
    Generate Terraform files for every stored account

    Each account is imported into OUTPUT_DIR/<provider>-<account id>, one
    all_resources_in_<region>.tf per region.
    """
    try:
        config = _load_config(ctx, output_dir=output_dir, max_workers=max_workers)

        store = AccountStore.load(config_path)
        accounts = store.list_accounts()
        if not accounts:
            click.echo("No accounts found. Use 'yogaya add' first.")
            return

        orchestrator = ImportOrchestrator(config.generate)
        summary = orchestrator.generate(accounts, providers=providers, account_ids=account_ids)

        rows = []
        for result in summary.results:
            ok_regions = sum(1 for r in result.regions if r.success)
            rows.append([
                result.account_id,
                result.provider,
                result.status,
                ok_regions,
                str(result.output_directory or ''),
            ])
        if rows:
            click.echo(tabulate(rows, headers=['Account', 'Provider', 'Status', 'Regions', 'Output'],
                                tablefmt='grid'))

        for result in summary.failed:
            click.echo(f"Error: {result.error}", err=True)

        if summary.failed:
            sys.exit(1)
        click.echo("Generation complete")
    except Exception as e:
        _fail(e)


@cli.command(name='list')
@click.argument('config_path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def list_accounts(ctx, config_path):
    """List stored accounts"""
    try:
        _load_config(ctx)
        store = AccountStore.load(config_path)
        accounts = store.list_accounts()

        if not accounts:
            click.echo("No accounts found.")
            return

        rows = [
            [a.id, a.provider, a.added_at, a.last_validated or 'never']
            for a in accounts
        ]
        click.echo(tabulate(rows, headers=['ID', 'Provider', 'Added', 'Validated'],
                            tablefmt='grid'))
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, dir_okay=False))
@click.argument('account_id')
@click.pass_context
def remove(ctx, config_path, account_id):
    """Remove a stored account by ID"""
    try:
        _load_config(ctx)
        store = AccountStore.load(config_path)
        if not store.remove(account_id):
            raise LookupError(f"account {account_id} not found")
        store.save()
        click.echo(f"Removed account {account_id}")
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument('base_dir', type=click.Path(exists=True, file_okay=False))
@click.argument('provider_dir')
@click.pass_context
def merge(ctx, base_dir, provider_dir):
    """
    Merge existing Terraformer output

    Every region directory under BASE_DIR containing a PROVIDER_DIR tree is
    merged into all_resources_in_<region>.tf.
    """
    try:
        _load_config(ctx)
        merged = merge_region_tree(base_dir, provider_dir)
        for path in merged:
            click.echo(f"Merged {path}")
        click.echo(f"Merged {len(merged)} region(s)")
    except Exception as e:
        _fail(e)


@cli.command(name='init-config')
@click.option('--output-file', '-o', default='yogaya.yaml',
              help='Output configuration file')
@click.option('--format', 'config_format', type=click.Choice(['yaml', 'json']),
              default='yaml', show_default=True, help='Configuration file format')
def init_config(output_file, config_format):
    """Write a default tool configuration file"""
    try:
        if Path(output_file).exists():
            if not click.confirm(f"Configuration file {output_file} already exists. Overwrite?"):
                click.echo("Configuration initialization cancelled.")
                return

        if config_format == 'yaml':
            with open(output_file, 'w') as f:
                f.write(DEFAULT_CONFIG_TEMPLATE)
        else:
            ConfigManager().save_config(output_file, format=config_format)

        click.echo(f"Configuration file created: {output_file}")
    except Exception as e:
        _fail(e)


def main():
    """Main entry point for the CLI"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user.", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
