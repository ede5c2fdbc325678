"""
CLI commands for managing teams and members.
"""

import sys

import click

from ..bridge.factory import build_components
from ..core.config import get_config
from ..core.database import DatabaseManager
from ..mailbox.client import CONNECTION_SECURITY_MODES


def _components():
    config = get_config()
    return build_components(config, DatabaseManager(config.database.connection_string))


@click.group()
def team():
    """Manage teams and their gateway mailboxes."""
    pass


@team.command("add")
@click.argument("name")
@click.option("--server", help="IMAP server hostname")
@click.option("--port", type=int, help="IMAP port (default: 993 for ssl, 143 otherwise)")
@click.option("--username", help="IMAP username")
@click.option("--password", help="IMAP password")
@click.option(
    "--security", type=click.Choice(CONNECTION_SECURITY_MODES), default="ssl", show_default=True,
    help="Connection security",
)
@click.option("--enable", is_flag=True, help="Enable the bridge immediately")
def team_add(name, server, port, username, password, security, enable):
    """Create a team.

    Example:
        sms-bridge team add "Night Shift" --server imap.example.com --username txt@example.com --password s3cret --enable
    """
    try:
        components = _components()
        new_team = components.db.add_team(
            name,
            imap_server=server,
            imap_port=port,
            imap_username=username,
            imap_password=password,
            imap_connection_security=security,
        )
        click.echo(f"✅ Added team '{name}' (ID: {new_team.id})")

        if enable:
            run_at = components.registrar.enable(new_team.id)
            click.echo(f"📡 Bridge enabled, first check at {run_at.strftime('%Y-%m-%d %H:%M:%S')}")

    except Exception as e:
        click.echo(f"❌ Failed to add team: {e}", err=True)
        sys.exit(1)


@team.command("list")
def team_list():
    """List teams with their bridge state.

    Example:
        sms-bridge team list
    """
    try:
        components = _components()
        teams = components.db.list_teams()

        if not teams:
            click.echo("No teams found")
            return

        click.echo(f"\n📋 Teams ({len(teams)}):")
        click.echo("-" * 80)

        for t in teams:
            status = "✅ Bridging" if t.bridge_enabled else "⏸️  Disabled"
            next_run = components.job_runner.next_scheduled_time(components.scheduler.hook, t.id)
            click.echo(f"\n{status}  [{t.id}] {t.name}")
            click.echo(f"  Mailbox:  {t.imap_username or '-'} @ {t.imap_server or '-'} ({t.imap_connection_security})")
            click.echo(f"  Back-off: step {t.backoff_step if t.backoff_step is not None else '-'}")
            click.echo(f"  Next run: {next_run.strftime('%Y-%m-%d %H:%M:%S') if next_run else '-'}")

        click.echo("")

    except Exception as e:
        click.echo(f"❌ Failed to list teams: {e}", err=True)
        sys.exit(1)


@team.command("enable")
@click.argument("team_id", type=int)
def team_enable(team_id):
    """Enable the bridge for a team and schedule its first check."""
    try:
        run_at = _components().registrar.enable(team_id)
        if run_at:
            click.echo(f"✅ Bridge enabled for team {team_id}, first check at {run_at.strftime('%Y-%m-%d %H:%M:%S')}")
        else:
            click.echo(f"✅ Bridge enabled for team {team_id} (check already scheduled)")

    except Exception as e:
        click.echo(f"❌ Failed to enable bridge: {e}", err=True)
        sys.exit(1)


@team.command("disable")
@click.argument("team_id", type=int)
def team_disable(team_id):
    """Disable the bridge for a team and cancel its pending check."""
    try:
        _components().registrar.disable(team_id)
        click.echo(f"✅ Bridge disabled for team {team_id}")

    except Exception as e:
        click.echo(f"❌ Failed to disable bridge: {e}", err=True)
        sys.exit(1)


@team.command("remove")
@click.argument("team_id", type=int)
@click.confirmation_option(prompt="Delete this team and its memberships?")
def team_remove(team_id):
    """Delete a team (cancels its pending check)."""
    try:
        if _components().registrar.remove_team(team_id):
            click.echo(f"✅ Removed team {team_id}")
        else:
            click.echo(f"⚠️  Team {team_id} not found")

    except Exception as e:
        click.echo(f"❌ Failed to remove team: {e}", err=True)
        sys.exit(1)


@team.command("sync")
def team_sync():
    """Make sure every enabled team has a check scheduled (and disabled ones don't)."""
    try:
        components = _components()
        armed = 0
        for t in components.db.list_teams():
            if components.registrar.sync(t.id):
                armed += 1
        click.echo(f"✅ Schedules synced ({armed} new check(s) armed)")

    except Exception as e:
        click.echo(f"❌ Failed to sync schedules: {e}", err=True)
        sys.exit(1)


@click.group()
def member():
    """Manage members and team membership."""
    pass


@member.command("add")
@click.argument("name")
@click.option("--phone", help="Phone number as the SMS gateway writes it in From, e.g. 5551234567")
def member_add(name, phone):
    """Create a member.

    Example:
        sms-bridge member add "Alex" --phone +15551234567
    """
    try:
        config = get_config()
        db = DatabaseManager(config.database.connection_string)
        new_member = db.add_member(name, phone)
        click.echo(f"✅ Added member '{name}' (ID: {new_member.id})")

    except Exception as e:
        click.echo(f"❌ Failed to add member: {e}", err=True)
        sys.exit(1)


@member.command("join")
@click.argument("member_id", type=int)
@click.argument("team_id", type=int)
@click.option("--unconfirmed", is_flag=True, help="Add without confirming (receives no texts)")
def member_join(member_id, team_id, unconfirmed):
    """Add a member to a team."""
    try:
        config = get_config()
        db = DatabaseManager(config.database.connection_string)
        db.add_membership(team_id, member_id, confirmed=not unconfirmed)
        state = "unconfirmed" if unconfirmed else "confirmed"
        click.echo(f"✅ Member {member_id} joined team {team_id} ({state})")

    except Exception as e:
        click.echo(f"❌ Failed to add membership: {e}", err=True)
        sys.exit(1)


@member.command("list")
@click.option("--team", "team_id", type=int, help="Only members of this team")
def member_list(team_id):
    """List members."""
    try:
        config = get_config()
        db = DatabaseManager(config.database.connection_string)
        members = db.list_members(team_id)

        if not members:
            click.echo("No members found")
            return

        click.echo(f"\n👥 Members ({len(members)}):")
        click.echo("-" * 80)
        for m in members:
            click.echo(f"  [{m.id}] {m.display_name or '-':<30} {m.phone_number or '(no phone)'}")
        click.echo("")

    except Exception as e:
        click.echo(f"❌ Failed to list members: {e}", err=True)
        sys.exit(1)
