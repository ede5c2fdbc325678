"""
SMS-Email Bridge - CLI Entry Point

Command-line interface for running and managing the bridge.
"""

import sys

import click

from .bridge.factory import build_components
from .cli.team_commands import team, member
from .core.config import get_config
from .core.database import DatabaseManager
from .core.logging_config import setup_logging
from .jobs.scheduler import BRIDGE_HOOK
from .jobs.worker import BridgeWorker


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", type=str, help="Log file path")
@click.option("--config-file", type=click.Path(dir_okay=False), help="Path to config.yaml")
@click.option("--imap-trace", is_flag=True, help="Log the IMAP conversation")
@click.pass_context
def cli(ctx, verbose, log_file, config_file, imap_trace):
    """SMS-Email Bridge CLI.

    Forwards texts arriving in a team's SMS gateway mailbox to the rest of the team.
    """
    ctx.ensure_object(dict)

    log_level = "DEBUG" if verbose else "INFO"
    # Worker cycles run in threads
    log_format = "worker" if ctx.invoked_subcommand == "start" else "standard"
    setup_logging(log_level=log_level, log_file=log_file, log_format=log_format, imap_trace=imap_trace)

    # First call wins; later get_config() calls return this instance
    get_config(config_file=config_file)

    ctx.obj["verbose"] = verbose
    ctx.obj["log_file"] = log_file


# ============================================================================
# MAIN OPERATIONS
# ============================================================================


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log texts instead of queueing them in the outbox")
def start(dry_run):
    """Run the worker: check mailboxes as their scheduled runs come due.

    Example:
        sms-bridge start
    """
    config = get_config()
    db = DatabaseManager(config.database.connection_string)
    components = build_components(config, db, dry_run=dry_run)

    # Enabled teams that lost their pending run (e.g. database restored) get one back
    for t in db.list_teams():
        components.registrar.sync(t.id)

    click.echo("🚀 Starting SMS-Email Bridge worker")
    click.echo("⚠️  Press Ctrl+C to stop")

    worker = BridgeWorker(
        components.job_runner,
        {BRIDGE_HOOK: components.bridge.run},
        max_concurrent=config.bridge.max_concurrent_cycles,
        cycle_timeout=config.bridge.cycle_timeout_seconds,
        poll_interval=config.bridge.worker_poll_interval_seconds,
    )
    worker.run()


@cli.command()
@click.argument("team_id", type=int)
@click.option("--dry-run", is_flag=True, help="Log texts instead of queueing them in the outbox")
def run(team_id, dry_run):
    """Run one bridge cycle for a team now.

    The cycle reschedules the team's next check like a scheduled run would.

    Example:
        sms-bridge run 1 --dry-run
    """
    try:
        config = get_config()
        components = build_components(config, DatabaseManager(config.database.connection_string), dry_run=dry_run)
        result = components.bridge.run(team_id)

        click.echo(f"\n📬 Team {team_id}: {result.outcome}")
        click.echo(f"  Matched:   {result.matched}")
        click.echo(f"  Forwarded: {result.forwarded}")
        if result.parse_errors:
            click.echo(f"  Unparseable: {result.parse_errors}")
        if result.rescheduled:
            next_run = components.job_runner.next_scheduled_time(BRIDGE_HOOK, team_id)
            click.echo(
                f"  Next check: {next_run.strftime('%Y-%m-%d %H:%M:%S')} (back-off step {result.backoff_step})"
            )
        click.echo("")

    except Exception as e:
        click.echo(f"❌ Cycle failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("team_id", type=int)
@click.option("--step", type=click.IntRange(min=0), default=0, show_default=True, help="Back-off step")
def schedule(team_id, step):
    """Schedule the next check for a team, replacing any pending one."""
    try:
        config = get_config()
        components = build_components(config, DatabaseManager(config.database.connection_string))
        run_at = components.scheduler.schedule_next(team_id, step)
        click.echo(f"✅ Team {team_id} will be checked at {run_at.strftime('%Y-%m-%d %H:%M:%S')}")

    except Exception as e:
        click.echo(f"❌ Failed to schedule: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("team_id", type=int)
def unschedule(team_id):
    """Cancel a team's pending check and clear its back-off step."""
    try:
        config = get_config()
        components = build_components(config, DatabaseManager(config.database.connection_string))
        components.scheduler.unschedule_next(team_id)
        click.echo(f"✅ Unscheduled team {team_id}")

    except Exception as e:
        click.echo(f"❌ Failed to unschedule: {e}", err=True)
        sys.exit(1)


# ============================================================================
# OUTBOX
# ============================================================================


@cli.group()
def outbox():
    """Inspect queued outbound texts."""
    pass


@outbox.command("list")
@click.option("--status", type=click.Choice(["pending", "sent", "failed"]), help="Filter by status")
@click.option("--limit", type=int, default=20, show_default=True)
def outbox_list(status, limit):
    """Show recent outbound texts."""
    try:
        config = get_config()
        db = DatabaseManager(config.database.connection_string)
        messages = db.list_outbound_messages(status=status, limit=limit)

        if not messages:
            click.echo("Outbox is empty")
            return

        click.echo(f"\n📤 Outbound texts ({len(messages)}):")
        click.echo("-" * 80)
        for m in messages:
            click.echo(f"\n[{m.id}] {m.status}  team {m.team_id}  {m.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
            click.echo(f"  From: {m.sender_phone}")
            click.echo(f"  To:   {', '.join(m.addressee_phones) or '-'}")
            click.echo(f"  Text: {m.body[:160]}")
        click.echo("")

    except Exception as e:
        click.echo(f"❌ Failed to list outbox: {e}", err=True)
        sys.exit(1)


# ============================================================================
# DATABASE MANAGEMENT
# ============================================================================


@cli.group()
def db():
    """Database management commands."""
    pass


@db.command("init")
@click.option("--drop", is_flag=True, help="Drop existing tables first (DESTRUCTIVE!)")
def db_init(drop):
    """Initialize database schema.

    Example:
        sms-bridge db init
    """
    try:
        config = get_config()
        database = DatabaseManager(config.database.connection_string)

        if drop:
            click.confirm("⚠️  This will DELETE ALL DATA. Continue?", abort=True)
            database.drop_tables()
            click.echo("🗑️  Dropped existing tables")

        database.create_tables()
        click.echo(f"✅ Database initialized ({config.database.connection_string.split('@')[-1]})")

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Database initialization failed: {e}", err=True)
        sys.exit(1)


# ============================================================================
# CONFIGURATION
# ============================================================================


@cli.group()
def config():
    """Configuration management."""
    pass


@config.command("show")
def config_show():
    """Show current configuration.

    Example:
        sms-bridge config show
    """
    cfg = get_config()
    b = cfg.bridge

    click.echo("\n⚙️  Current Configuration")
    click.echo("=" * 80)

    click.echo(f"\n📊 Runtime Settings ({cfg.config_file}):")
    click.echo(f"  Debug: {'Enabled' if b.debug else 'Disabled'}")
    click.echo(f"  Back-off: {b.backoff_time_step}s step, x{b.backoff_multiplier}, max {b.backoff_max_seconds}s")
    click.echo(f"  Mailbox: {b.mailbox_name} (timeout {b.imap_timeout_seconds}s)")
    click.echo(f"  Worker: {b.max_concurrent_cycles} concurrent, {b.cycle_timeout_seconds}s cycle timeout")
    click.echo(f"  Transport: {b.transport}")

    click.echo("\n🗄️  Environment (.env):")
    click.echo(f"  Environment: {cfg.env}")
    click.echo(f"  Database: {cfg.database.connection_string.split('@')[-1]}")

    click.echo("\n" + "=" * 80 + "\n")


@config.command("validate")
def config_validate():
    """Validate configuration.

    Example:
        sms-bridge config validate
    """
    cfg = get_config()
    errors = cfg.validate()

    click.echo("\n🔍 Validating Configuration")
    click.echo("=" * 80)

    if not errors:
        click.echo("\n✅ Configuration is valid\n")
        sys.exit(0)
    else:
        click.echo("\n❌ Configuration has errors:")
        for error in errors:
            click.echo(f"   • {error}")
        click.echo("")
        sys.exit(1)


@config.command("init")
def config_init():
    """Write the current settings (defaults if none) to config.yaml."""
    cfg = get_config()
    cfg.save_yaml_config()
    click.echo(f"✅ Wrote {cfg.config_file}")


cli.add_command(team)
cli.add_command(member)


if __name__ == "__main__":
    cli()
