"""CLI entry point for Ferry."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import structlog
import typer
import yaml
from rich import print as rprint
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from ferry_core.config import FerryConfig, ServerRegistry, load_config
from ferry_core.config.loader import DEFAULT_CONFIG_TEMPLATE
from ferry_core.errors import TransferError, TransferInterruptedError
from ferry_core.state import StateStore, TransferState
from ferry_core.transfer import RichProgressSink, RunReport, TransferEngine, request_stop, transfer_dir_for

app = typer.Typer(
    name="ferry",
    help="Move the binary payload of one repository server to another.",
)

config_app = typer.Typer(help="Manage Ferry configuration.")
app.add_typer(config_app, name="config")

transfer_app = typer.Typer(help="Run and inspect data transfers.")
app.add_typer(transfer_app, name="transfer")

# Global state
_config: FerryConfig | None = None

_LOG_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def _json_formatter() -> logging.Formatter:
    """Render stdlib log records as one JSON object per line."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )


def _configure_logging(cfg: FerryConfig) -> None:
    if cfg.log_format == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(_json_formatter())
    else:
        handler = RichHandler(show_path=False, rich_tracebacks=True)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(_LOG_LEVELS[cfg.log_level])
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _get_config() -> FerryConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to ferry.yaml")
    ] = None,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _configure_logging(_config)


def _split_patterns(value: str | None) -> list[str]:
    """Parse a semicolon-separated pattern list."""
    if not value:
        return []
    return [p.strip() for p in value.split(";") if p.strip()]


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else "-"


def _display_report(report: RunReport, dry_run: bool) -> None:
    if dry_run:
        table = Table(title=f"Planned phases ({len(report.phases_planned)})")
        table.add_column("Repository", style="cyan")
        table.add_column("Phase", style="green")
        for repo, phase in report.phases_planned:
            table.add_row(repo, phase)
        rprint(table)
    lines = [
        f"[dim]Run:[/dim]        {report.run_id}",
        f"[dim]Repos:[/dim]      {len(report.repositories)}",
        f"[dim]Phases run:[/dim] {len(report.phases_run)}",
    ]
    if report.nodes:
        lines.append(f"[dim]Nodes:[/dim]      {', '.join(report.nodes)}")
    if report.missing_on_target:
        lines.append(f"[yellow]Missing on target:[/yellow] {', '.join(report.missing_on_target)}")
    if report.failed:
        for repo, reason in sorted(report.failed.items()):
            lines.append(f"[red]Failed:[/red] {repo}: {reason}")
    rprint(Panel("\n".join(lines), title="Transfer", border_style="blue"))


def _display_state(state: TransferState) -> None:
    table = Table(title=f"Repositories ({len(state.repositories)})")
    table.add_column("Repository", style="cyan")
    table.add_column("Migration")
    table.add_column("Diff windows", justify="right")
    table.add_column("Last window", style="yellow")
    for repo in state.repositories:
        last = repo.last_diff()
        if last is None:
            last_str = "-"
        else:
            status = "[green]completed[/green]" if last.completed else "[yellow]open[/yellow]"
            last_str = f"{_fmt_time(last.handled_range.ended)} ({status})"
        if repo.migration.ended is not None:
            migration = f"done {_fmt_time(repo.migration.ended)}"
        elif repo.migration.started is not None:
            migration = f"started {_fmt_time(repo.migration.started)}"
        else:
            migration = "-"
        table.add_row(
            repo.name,
            migration,
            str(len(repo.diffs)),
            last_str,
        )
    rprint(table)
    rprint(f"[dim]Source nodes:[/dim] {', '.join(state.nodes) if state.nodes else '-'}")


# ---------------------------------------------------------------------------
# Transfer commands
# ---------------------------------------------------------------------------


@transfer_app.command("run")
def transfer_run(
    source: str = typer.Argument(..., help="Source server id"),
    target: str = typer.Argument(..., help="Target server id"),
    include_repos: str | None = typer.Option(
        None, "--include-repos", help="Semicolon-separated repository patterns to include"
    ),
    exclude_repos: str | None = typer.Option(
        None, "--exclude-repos", help="Semicolon-separated repository patterns to exclude"
    ),
    threads: int | None = typer.Option(None, "--threads", min=1, help="Worker threads"),
    filestore: bool | None = typer.Option(
        None, "--filestore/--no-filestore", help="Ask the agent to check the target filestore first"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report phases without transferring"),
) -> None:
    """Transfer repositories from SOURCE to TARGET."""
    cfg = _get_config()
    updates: dict = {}
    if include_repos is not None:
        updates["include_repos"] = _split_patterns(include_repos)
    if exclude_repos is not None:
        updates["exclude_repos"] = _split_patterns(exclude_repos)
    if threads is not None:
        updates["threads"] = threads
    transfer_cfg = cfg.transfer.model_copy(update=updates)

    registry = ServerRegistry(cfg)
    try:
        source_server = registry.get_server(source)
        target_server = registry.get_server(target)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    if source_server.url.rstrip("/") == target_server.url.rstrip("/"):
        rprint("[red]Error:[/red] source and target must be different servers")
        raise typer.Exit(1)

    rprint(f"[bold]Transferring[/bold] {source} -> {target} ({transfer_cfg.threads} threads)...")
    engine = TransferEngine(
        registry,
        source,
        target,
        transfer_cfg,
        progress=RichProgressSink(),
        dry_run=dry_run,
        check_existence_in_filestore=filestore,
    )
    try:
        report = engine.run()
    except TransferInterruptedError as e:
        rprint(f"[yellow]Stopped:[/yellow] {e}")
        raise typer.Exit(2)
    except (TransferError, ValueError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        engine.close()
    _display_report(report, dry_run)


@transfer_app.command("status")
def transfer_status() -> None:
    """Show the persisted transfer state."""
    cfg = _get_config()
    store = StateStore(transfer_dir_for(cfg.transfer))
    if store.is_clean_start():
        rprint("[dim]No transfer has run yet.[/dim]")
        return
    try:
        state = store.read()
    except TransferError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _display_state(state)


@transfer_app.command("stop")
def transfer_stop() -> None:
    """Ask a running transfer to stop."""
    path = request_stop(_get_config().transfer)
    rprint(f"[green]Stop requested[/green] ({path})")


# ---------------------------------------------------------------------------
# Config commands
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    data = cfg.model_dump()
    # Never echo secrets
    for server in data["servers"].values():
        for key in ("password", "access_token"):
            if server.get(key):
                server[key] = "***"
    rprint(Syntax(yaml.dump(data, default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default ferry.yaml in current directory."""
    target = Path("ferry.yaml")
    if target.exists() and not force:
        rprint("[yellow]ferry.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


if __name__ == "__main__":
    app()
