"""
Main CLI entry point for Hub Backup.

This module provides the command-line interface using Click with Rich
formatting for operator-facing output.
"""

import sys
import traceback
from pathlib import Path
from typing import Callable, List, Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from hub_backup import __version__
from hub_backup.backup.manager import BackupManager
from hub_backup.backup.templates import SCHEDULE_FILE
from hub_backup.core.exceptions import HubBackupError
from hub_backup.models.registry import BackupPriority, ServiceEntry
from hub_backup.models.session import (
    BackupResult,
    CleanupReport,
    RestoreReport,
    RestoreState,
    VerificationReport,
)
from hub_backup.models.settings import HubSettings
from hub_backup.utils.helpers import format_bytes
from hub_backup.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger("cli")


def _manager(ctx: click.Context) -> BackupManager:
    """Build (once) the manager for this invocation from options and settings."""
    if ctx.obj.get("manager") is None:
        settings = HubSettings.load(
            ctx.obj.get("config"),
            hub_root=ctx.obj.get("hub_root"),
            backup_root=ctx.obj.get("backup_root"),
            user=ctx.obj.get("user"),
        )
        ctx.obj["manager"] = BackupManager(settings)
    return ctx.obj["manager"]


def _fail(ctx: click.Context, error: Exception) -> None:
    message = error.message if isinstance(error, HubBackupError) else str(error)
    console.print(f"[red]Error: {escape(message)}[/red]")
    if ctx.obj.get("verbose", False):
        console.print(f"[dim]{traceback.format_exc()}[/dim]")
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--hub-root', envvar='HUB_ROOT', help='Hub data root (default: /srv/hub)')
@click.option('--backup-root', envvar='HUB_BACKUP_ROOT', help='Directory holding the backup archives')
@click.option('--user', envvar='HUB_USER', help='Account that owns the hub data')
@click.option('--config', '-c', envvar='HUB_BACKUP_CONFIG',
              type=click.Path(exists=True, dir_okay=False), help='Settings file (YAML)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--json-logs', is_flag=True, help='Emit log records as JSON lines')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also write logs to this file')
@click.pass_context
def main(ctx: click.Context, version: bool, hub_root: Optional[str], backup_root: Optional[str],
         user: Optional[str], config: Optional[str], verbose: bool, json_logs: bool,
         log_file: Optional[str]):
    """
    Hub Backup

    Back up, verify, prune and restore the configuration and data of a
    container service hub.
    """
    ctx.ensure_object(dict)
    ctx.obj.update({
        'verbose': verbose,
        'hub_root': hub_root,
        'backup_root': backup_root,
        'user': user,
        'config': config,
    })

    if version:
        console.print(f"Hub Backup version {__version__}")
        sys.exit(0)

    setup_logging(
        level="DEBUG" if verbose else "INFO",
        log_file=log_file,
        structured_logging=json_logs,
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.command()
@click.option('--verify', is_flag=True, help='Verify the integrity of existing backups')
@click.option('--cleanup', is_flag=True, help='Prune old backups and run daily maintenance')
@click.pass_context
def backup(ctx: click.Context, verify: bool, cleanup: bool):
    """Create a backup, or verify/clean up the existing ones."""
    if verify and cleanup:
        raise click.UsageError("--verify and --cleanup are mutually exclusive")

    try:
        manager = _manager(ctx)
        if verify:
            console.print("[blue]🔍 Verifying backup integrity...[/blue]")
            report = manager.verify()
            _print_verification(report)
            sys.exit(0 if report.ok else 1)
        elif cleanup:
            console.print("[blue]🧹 Running backup maintenance...[/blue]")
            _print_cleanup(manager.cleanup())
        else:
            console.print("[blue]💾 Creating hub configuration backup...[/blue]")
            _print_backup(manager.run_backup(), manager.catalog.backup_root)
    except HubBackupError as e:
        _fail(ctx, e)


def _print_backup(result: BackupResult, backup_root: Path) -> None:
    summary = (
        f"[bold]File:[/bold] {result.path.name}\n"
        f"[bold]Size:[/bold] {format_bytes(result.size)}\n"
        f"[bold]Location:[/bold] {backup_root}\n"
        f"[bold]Completed:[/bold] {result.created_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"[bold]Services:[/bold] {', '.join(result.service_directories) or 'none'}"
    )
    console.print(Panel(summary, title="✅ Backup Complete", border_style="green", padding=(1, 2)))
    for warning in result.warnings:
        console.print(f"[yellow]⚠️ {escape(warning)}[/yellow]")
    if result.pruned:
        console.print(f"[dim]Removed old backups: {', '.join(result.pruned)}[/dim]")
    console.print(f"[dim]To restore: hub-backup restore {result.path}[/dim]")


def _print_verification(report: VerificationReport) -> None:
    console.print(
        f"Verification: {report.total} total, {report.failed_count} failed, "
        f"{report.quarantined_count} corrupted"
    )
    for name in report.quarantined:
        console.print(f"[red]❌ {name} - corrupted, moved to quarantine[/red]")
    for name in report.incomplete:
        console.print(f"[yellow]⚠️ {name} - missing essential files[/yellow]")
    if report.ok:
        console.print("[green]✅ All backups verified successfully[/green]")
    else:
        console.print(f"[yellow]{report.failed_count} backup(s) failed verification[/yellow]")


def _print_cleanup(report: CleanupReport) -> None:
    if report.pruned:
        console.print(f"Removed backups: {', '.join(report.pruned)}")
    if report.log_entries_removed:
        console.print(f"Removed {report.log_entries_removed} old log entries")
    if report.scratch_removed:
        console.print(f"Removed {len(report.scratch_removed)} stale temporary directories")
    for warning in report.warnings:
        console.print(f"[yellow]⚠️ {escape(warning)}[/yellow]")
    if report.emergency:
        console.print("[yellow]Critically low space - kept only the most recent backups[/yellow]")
    console.print("[green]✅ Cleanup completed[/green]")


def _confirm_restore(assume_yes: bool) -> Callable[[RestoreReport], bool]:
    def confirm(report: RestoreReport) -> bool:
        if report.manifest_preview:
            console.print(Panel(
                "\n".join(escape(line) for line in report.manifest_preview),
                title="📋 Backup Information",
                border_style="blue"
            ))
        if assume_yes:
            return True
        console.print("[yellow]⚠️ This will replace the current hub data with the backup.[/yellow]")
        console.print("[dim]A safety backup of the current data is taken first.[/dim]")
        return Confirm.ask("[cyan]Continue with restore?[/cyan]", default=False)
    return confirm


@main.command()
@click.argument('archive', type=click.Path(dir_okay=False, path_type=Path))
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.option('--with-system-config', is_flag=True, help='Also restore system configuration files')
@click.pass_context
def restore(ctx: click.Context, archive: Path, yes: bool, with_system_config: bool):
    """Restore the hub from ARCHIVE."""
    try:
        manager = _manager(ctx)
        console.print(f"[blue]🔄 Restoring hub from {archive}[/blue]")
        report = manager.restore(
            archive,
            confirm=_confirm_restore(yes),
            restore_system_config=with_system_config,
        )
    except HubBackupError as e:
        _fail(ctx, e)
        return

    logger.info(f"Restore finished: {report.state.value}", extra={"restore_report": report.to_dict()})
    _print_restore(report)
    sys.exit(0 if report.succeeded else 1)


def _print_restore(report: RestoreReport) -> None:
    table = Table(title="Restore Steps", box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Error", style="red")
    for step in report.steps:
        table.add_row(step.state.value, step.status.value, escape(step.error or ""))
    console.print(table)

    if report.safety_snapshot:
        console.print(f"🔒 Safety backup: {report.safety_snapshot}")
        console.print(f"[dim]   To undo: tar xzf {report.safety_snapshot} -C <hub parent directory>[/dim]")

    for failure in report.failures:
        console.print(f"[yellow]⚠️ {escape(failure.message)}[/yellow]")
    for warning in report.warnings:
        console.print(f"[yellow]⚠️ {escape(warning)}[/yellow]")

    if report.health:
        health = Table(title="Service Health", box=box.SIMPLE)
        health.add_column("Service", style="cyan")
        health.add_column("URL", style="dim")
        health.add_column("Status")
        for result in report.health:
            status = "[green]✅ Ready[/green]" if result.reachable else "[yellow]⏳ Still starting[/yellow]"
            health.add_row(escape(result.name), escape(result.url), status)
        console.print(health)

    if report.state == RestoreState.CANCELLED:
        console.print("[yellow]Restore cancelled[/yellow]")
    elif report.succeeded:
        console.print("[green]🎉 Restore complete![/green]")
    else:
        message = report.error.message if report.error else "unknown error"
        console.print(f"[red]Restore aborted during {report.steps[-1].state.value}: {escape(message)}[/red]")


@main.command()
@click.option('--name', required=True, help='Service name')
@click.option('--data-path', required=True, help='Absolute data directory of the service')
@click.option('--container', 'container_name', required=True, help='Container name')
@click.option('--url', 'access_url', default='', help='Access URL')
@click.option('--description', default='', help='Description')
@click.option('--type', 'service_type', default='generic', help='Service type')
@click.option('--priority', type=click.Choice([p.value for p in BackupPriority]),
              default=BackupPriority.NORMAL.value, help='Backup and startup priority')
@click.option('--port', 'ports', multiple=True, help='Published port (repeatable)')
@click.option('--depends-on', 'dependencies', multiple=True, help='Service dependency (repeatable)')
@click.option('--critical', is_flag=True, help='Start before every other service on restore')
@click.pass_context
def register(ctx: click.Context, name: str, data_path: str, container_name: str, access_url: str,
             description: str, service_type: str, priority: str, ports: List[str],
             dependencies: List[str], critical: bool):
    """Register a service in the service registry."""
    try:
        entry = ServiceEntry(
            name=name,
            data_path=data_path,
            container_name=container_name,
            access_url=access_url,
            description=description,
            service_type=service_type,
            backup_priority=BackupPriority(priority),
            ports=list(ports),
            dependencies=list(dependencies),
            critical=critical,
        )
    except PydanticValidationError as e:
        console.print(f"[red]Invalid service entry: {escape(str(e))}[/red]")
        sys.exit(1)

    try:
        registry = _manager(ctx).register(entry)
    except HubBackupError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]✅ Registered {name} ({len(registry.services)} services)[/green]")


@main.command()
@click.pass_context
def init(ctx: click.Context):
    """Create the hub metadata and service registry documents."""
    try:
        manager = _manager(ctx)
        metadata, registry = manager.initialize()
    except HubBackupError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]✅ Hub initialised at {metadata.data_root}[/green]")
    console.print(f"[dim]Metadata: {manager.metadata.path}[/dim]")
    console.print(f"[dim]Registry: {manager.registry.path} ({len(registry.services)} services)[/dim]")
    console.print(f"[dim]Backups:  {metadata.backup_root}[/dim]")


@main.command(name='list')
@click.pass_context
def list_backups(ctx: click.Context):
    """List backups in the catalog and in quarantine."""
    try:
        entries, quarantined = _manager(ctx).list_archives()
    except HubBackupError as e:
        _fail(ctx, e)
        return

    if not entries and not quarantined:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(
        title="💾 Hub Backups",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
        title_style="bold blue"
    )
    table.add_column("Archive", style="cyan", no_wrap=True)
    table.add_column("Created", style="blue")
    table.add_column("Size", style="yellow", justify="right")
    for entry in reversed(entries):
        table.add_row(entry.name, entry.created_at.strftime("%Y-%m-%d %H:%M:%S"), format_bytes(entry.size))
    console.print(table)

    if quarantined:
        console.print("[red]Quarantined (corrupted):[/red]")
        for path in quarantined:
            console.print(f"  • {path.name}")


@main.command()
@click.option('--output', '-o', type=click.Path(dir_okay=False),
              help=f'Write the schedule to this file (e.g. {SCHEDULE_FILE})')
@click.option('--command', 'command', default='hub-backup', help='Command cron should run')
@click.pass_context
def schedule(ctx: click.Context, output: Optional[str], command: str):
    """Print a cron schedule for backup, verification and cleanup."""
    try:
        content = _manager(ctx).schedule(command)
    except HubBackupError as e:
        _fail(ctx, e)
        return

    if not output:
        click.echo(content, nl=False)
        return

    try:
        Path(output).write_text(content, encoding="utf-8")
    except OSError as e:
        _fail(ctx, e)
        return
    logger.info(f"Backup schedule written to {output}")
    console.print(f"[green]✅ Backup schedule written to {output}[/green]")
    console.print("  🗓️  Monthly full backup: 1st of month at 2AM")
    console.print("  🔍 Weekly verification: Sundays at 3AM")
    console.print("  🧹 Daily cleanup: Every day at 1AM")


if __name__ == '__main__':
    main()
