"""
gemfury-to-npm Command Line Interface

Main entry point for the gemfury-to-npm CLI.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from gemfury_to_npm.exceptions import ConfigError, MigrationError, get_error_code

console = Console()


def migration_options(func):
    """Options shared by `migrate` and `plan`."""
    options = [
        click.option("--user", "-u", help="Gemfury account (env: GEMFURY_USER)"),
        click.option("--apikey", "-k", help="Gemfury API key (env: GEMFURY_API_KEY)"),
        click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
                     help="YAML config file (default: ./gemfury-to-npm.yaml)"),
        click.option("--env-file", type=click.Path(exists=True, dir_okay=False),
                     help=".env file (default: ./.env)"),
        click.option("--registry", help="npm registry to publish to (env: NPM_REGISTRY)"),
        click.option("--module", "-m", "modules", multiple=True,
                     help="Only migrate this module (repeatable)"),
        click.option("--verbose", "-v", is_flag=True, help="Show detailed output"),
        click.option("--log-file", type=click.Path(dir_okay=False), help="Write a debug log here"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="gemfury-to-npm")
def main():
    """gemfury-to-npm: republish Gemfury packages on npm"""
    pass


@main.command()
@migration_options
@click.option("--tag", help="dist-tag for published versions (env: NPM_TAG)")
@click.option("--gzip/--no-gzip", "gzip_output", default=None,
              help="Gzip the rewritten tarballs (default: on)")
@click.option("--dry-run", is_flag=True, help="Only show which versions would be published")
def migrate(tag: str, gzip_output: Optional[bool], dry_run: bool, **kwargs):
    """Publish every Gemfury version missing on npm.

    Examples:
        gemfury-to-npm migrate -u acme -k $GEMFURY_API_KEY
        gemfury-to-npm migrate -m acme-widgets --dry-run
    """
    run_migration(tag=tag, gzip_output=gzip_output, dry_run=dry_run, **kwargs)


@main.command()
@migration_options
def plan(**kwargs):
    """Show the versions `migrate` would publish, without publishing."""
    run_migration(dry_run=True, **kwargs)


def run_migration(
    user: Optional[str] = None,
    apikey: Optional[str] = None,
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    registry: Optional[str] = None,
    modules: Tuple[str, ...] = (),
    verbose: bool = False,
    log_file: Optional[str] = None,
    tag: Optional[str] = None,
    gzip_output: Optional[bool] = None,
    dry_run: bool = False,
):
    """Resolve configuration, run the migrator and exit with its status."""
    from gemfury_to_npm.config import load_config
    from gemfury_to_npm.events import fan_out
    from gemfury_to_npm.logging_config import get_logger, setup_logging
    from gemfury_to_npm.orchestrator import Migrator
    from gemfury_to_npm.publisher import NpmPublisher
    from gemfury_to_npm.registries import GemfurySource, NpmRegistry
    from gemfury_to_npm.ui import ConsoleReporter, LoggingReporter, mask_secrets

    setup_logging(
        level=logging.DEBUG if verbose else None,
        log_file=Path(log_file) if log_file else None,
    )

    try:
        config = load_config(
            config_path=Path(config_path) if config_path else None,
            env_file=Path(env_file) if env_file else None,
            gemfury_user=user,
            gemfury_api_key=apikey,
            npm_registry=registry,
            npm_tag=tag,
            modules=list(modules) or None,
            gzip_output=gzip_output,
            dry_run=dry_run or None,
        )
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(mask_secrets(str(e)))}")
        sys.exit(get_error_code(e))

    source = GemfurySource(
        config.gemfury_user, config.gemfury_api_key,
        base_url=config.gemfury_url, timeout=config.timeout,
    )
    destination = NpmRegistry(config.npm_registry, timeout=config.timeout)
    publisher = NpmPublisher(
        npm_command=config.npm_command,
        registry=config.npm_registry,
        tag=config.npm_tag,
        access=config.npm_access,
        timeout=config.publish_timeout,
    )

    with ConsoleReporter(console) as reporter:
        if log_file:
            reporter = fan_out(reporter, LoggingReporter(get_logger("run")))

        migrator = Migrator(
            source, destination, publisher, reporter,
            compress=config.gzip_output,
            dry_run=config.dry_run,
            modules=config.modules,
            workdir=config.workdir,
        )

        try:
            summary = migrator.run()
        except KeyboardInterrupt:
            console.print("\n[yellow]Migration interrupted.[/yellow] Run again to continue; published versions are skipped.")
            sys.exit(130)
        except MigrationError as e:
            console.print(f"[red]Error:[/red] {escape(mask_secrets(str(e)))}")
            sys.exit(get_error_code(e))

    if config.dry_run:
        show_plan(summary)

    sys.exit(0 if summary.ok else 1)


def show_plan(summary):
    """Print pending versions per module."""
    table = Table(title="Pending Versions", border_style="blue")
    table.add_column("Module", style="cyan")
    table.add_column("Versions")

    for module in summary.modules:
        if module.error:
            table.add_row(module.name, f"[red]{module.error}[/red]")
        else:
            table.add_row(module.name, ", ".join(module.pending) or "[dim]up to date[/dim]")

    console.print(table)


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              help="YAML config file")
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False), help=".env file")
def doctor(config_path: Optional[str], env_file: Optional[str]):
    """Check npm and the migration configuration."""
    from gemfury_to_npm.config import load_config
    from gemfury_to_npm.publisher import check_npm

    all_passed = True
    console.print("[bold blue]gemfury-to-npm Doctor[/bold blue]")
    console.print()

    config = None
    try:
        config = load_config(
            config_path=Path(config_path) if config_path else None,
            env_file=Path(env_file) if env_file else None,
        )
        config.validate()
        console.print("  [green]✓[/green] Configuration: complete")
    except ConfigError as e:
        all_passed = False
        console.print(f"  [red]✗[/red] Configuration: {escape(e.message)}")
        if e.remediation:
            console.print(f"    [dim]{e.remediation}[/dim]")

    passed, message = check_npm(config.npm_command if config else "npm")
    icon = "[green]✓[/green]" if passed else "[red]✗[/red]"
    console.print(f"  {icon} npm: {message}")
    all_passed = all_passed and passed

    if config is not None:
        console.print()
        table = Table(title="Settings", border_style="blue")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        for key, value in config.redacted().items():
            table.add_row(key, str(value) if value not in (None, "", []) else "[dim]not set[/dim]")
        console.print(table)

    console.print()
    if all_passed:
        console.print("[green]All checks passed.[/green]")
    else:
        console.print("[yellow]Some checks failed.[/yellow]")

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
