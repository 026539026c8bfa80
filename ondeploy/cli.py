"""
CLI interface for ondeploy.

Provides commands to run on-deploy scripts, inspect their recorded status,
and repair records by hand.

Scripts are listed in config.yaml (in the order to run them) and resolved
through the script registry: registered names, "ondeploy.scripts" entry
points, or allowlisted "module:Class" paths.
"""

from pathlib import Path

import click
from rich.table import Table

from ondeploy import __version__


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'ondeploy init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


@click.group()
@click.version_option(version=__version__, prog_name="ondeploy")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to config.yaml (default: $ONDEPLOY_HOME/config.yaml)",
)
@click.pass_context
def main(ctx, config_path: Path | None):
    """
    ondeploy - Run one-time upgrade scripts exactly once.

    Scripts that succeeded are skipped on later runs; failed scripts are
    retried on the next run.
    """
    from ondeploy.config import load_config
    from ondeploy.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except Exception as e:
        # init works without a config; other commands check ctx.obj["config"]
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_file=config.log_file,
        log_level=config.log_level,
        log_format=config.log_format,
        console_output=config.log_console,
    )


@main.command("run")
@click.option(
    "--script",
    "scripts",
    multiple=True,
    help="Run only these scripts, in the order given (default: scripts from config)",
)
@click.pass_context
def run(ctx, scripts: tuple[str, ...]):
    """
    Run all configured on-deploy scripts that have not yet succeeded.

    Examples:

        ondeploy run

        ondeploy run --script AddIndex --script MigrateUsers
    """
    from ondeploy.errors import EarlyTermination
    from ondeploy.executor import run_on_deploy

    config = _require_config(ctx)
    script_ids = list(scripts) if scripts else None

    try:
        run_on_deploy(config, script_ids=script_ids)
    except EarlyTermination as e:
        click.echo(f"✗ On-deploy scripts aborted ({e.kind.value}): {e}", err=True)
        raise SystemExit(1)

    click.echo("✓ On-deploy scripts completed")


@main.command("status")
@click.pass_context
def status(ctx):
    """Show the recorded status of every on-deploy script."""
    from ondeploy.errors import EarlyTermination
    from ondeploy.executor import build_executor
    from ondeploy.session import session_scope
    from ondeploy.utils import console, format_timestamp

    config = _require_config(ctx)
    executor = build_executor(config)

    try:
        with session_scope(executor.session_factory) as session:
            records = executor.store_factory(session).list_records()
    except EarlyTermination as e:
        click.echo(f"✗ Could not read script status: {e}", err=True)
        raise SystemExit(1)

    if not records:
        click.echo("No on-deploy script status recorded.")
        return

    table = Table(title="On-deploy scripts")
    table.add_column("Script")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Ended")
    for record in records:
        table.add_row(
            record.identity,
            record.status.value if record.status else "-",
            format_timestamp(record.started_at),
            format_timestamp(record.ended_at),
        )
    console.print(table)


@main.command("reset")
@click.argument("identity")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx, identity: str, yes: bool):
    """
    Delete the status record of one script so it runs again.

    Use this to repair a script left in 'running' by a crashed activation.
    IDENTITY is the script identity as shown by 'ondeploy status'.
    """
    from ondeploy.errors import EarlyTermination
    from ondeploy.executor import build_executor

    config = _require_config(ctx)
    if not yes:
        click.confirm(f"Reset status of '{identity}'? It will run again on the next activation", abort=True)

    try:
        removed = build_executor(config).reset(identity)
    except EarlyTermination as e:
        click.echo(f"✗ Could not reset {identity}: {e}", err=True)
        raise SystemExit(1)

    if removed:
        click.echo(f"✓ Reset {identity}")
    else:
        click.echo(f"No status recorded for {identity}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize ondeploy configuration."""
    from ondeploy.config import get_ondeploy_home
    import yaml

    home = get_ondeploy_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "database_path": str(home / "app.db"),
        "scripts": [],
        "script_modules": [],
        "status_backend": "sqlite",
        "status_table": "ondeploy_script_status",
        "log_level": "INFO",
        "log_format": "pretty",
        "log_file": None,
        "env_file": str(home / ".env"),
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    click.echo(f"Initialized ondeploy config at {cfg_path}")


@main.group("scripts")
def scripts_group():
    """Inspect available on-deploy scripts."""
    pass


@scripts_group.command("list")
@click.pass_context
def list_scripts(ctx):
    """List registered on-deploy scripts."""
    from ondeploy.errors import EarlyTermination
    from ondeploy.registry import registry

    config = ctx.obj.get("config")
    if config is not None:
        try:
            registry.import_modules(config.script_modules)
        except EarlyTermination as e:
            click.echo(f"✗ {e}", err=True)
            raise SystemExit(1)

    names = registry.names()
    if not names:
        click.echo("No on-deploy scripts registered.")
        return

    configured = set(config.scripts) if config is not None else set()
    for name in names:
        marker = "*" if name in configured else " "
        click.echo(f"{marker} {name}")


if __name__ == "__main__":
    main()
