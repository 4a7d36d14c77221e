"""CLI interface for the Genealogy Graph Engine."""

import asyncio
import datetime as dt
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import EngineConfig, load_config
from .errors import ConfigurationError
from .graph import resolve_kinship
from .logging import configure_logging
from .models import Member, parse_gender
from .session import GenealogySession

app = typer.Typer(
    name="genealogy",
    help="Family tree layout, kinship and editing for one genealogy scope",
    add_completion=False,
)
console = Console()


def get_config() -> EngineConfig:
    """Load configuration from environment."""
    try:
        config = load_config()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2)
    configure_logging(config.log_level)
    return config


def _with_session(action):
    """Open a session on the configured scope, run ``action`` on it, close it."""
    config = get_config()

    async def run():
        session = GenealogySession.from_config(config)
        if not await session.start():
            _fail(session.error)
        try:
            return await action(session)
        finally:
            session.close()

    return asyncio.run(run())


def _fail(message: str | None):
    console.print(f"[red]Error: {message or 'unknown error'}[/red]")
    raise typer.Exit(1)


def _check(session: GenealogySession, result):
    if result is None or result is False:
        _fail(session.error)
    return result


def _resolve(session: GenealogySession, ref: str) -> Member:
    """Find a member by id, or by a unique case-insensitive name."""
    member = session.store.get_member(ref)
    if member is not None:
        return member
    matches = [m for m in session.members if m.name.casefold() == ref.strip().casefold()]
    if len(matches) == 1:
        return matches[0]
    if matches:
        _fail(f"'{ref}' matches {len(matches)} members; use the member id")
    _fail(f"No member '{ref}'")


def _gender(value: str | None):
    if value is None:
        return None
    try:
        return parse_gender(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _added(member: Member, what: str) -> None:
    console.print(f"[green]Added {what} {member.name} ({member.id}), generation {member.generation}[/green]")


@app.command("add-root")
def add_root(
    name: str = typer.Argument(..., help="Name of the first-generation ancestor"),
    gender: str = typer.Option("male", "--gender", "-g", help="male or female"),
    birth: str = typer.Option(None, "--birth", "-b", help="Birth date, free text"),
):
    """Create the root ancestor of an empty scope."""
    root_gender = _gender(gender)

    async def action(session: GenealogySession):
        member = _check(session, await session.add_root(name, root_gender, birth=birth))
        _added(member, "root")

    _with_session(action)


@app.command("add-child")
def add_child(
    parent: str = typer.Argument(..., help="Parent member id or name"),
    name: str = typer.Argument(..., help="Child's name"),
    gender: str = typer.Option("male", "--gender", "-g", help="male or female"),
    mother: str = typer.Option(None, "--mother", "-m", help="Mother member id or name"),
    birth: str = typer.Option(None, "--birth", "-b", help="Birth date, free text"),
):
    """Add a child one generation below PARENT."""
    child_gender = _gender(gender)

    async def action(session: GenealogySession):
        parent_member = _resolve(session, parent)
        mother_id = _resolve(session, mother).id if mother else None
        member = _check(
            session,
            await session.add_child(parent_member.id, name, child_gender, mother_id=mother_id, birth=birth),
        )
        _added(member, "child")

    _with_session(action)


@app.command("add-spouse")
def add_spouse(
    partner: str = typer.Argument(..., help="Partner member id or name"),
    name: str = typer.Argument(..., help="Spouse's name"),
    gender: str = typer.Option(None, "--gender", "-g", help="male or female (default: opposite of partner)"),
    birth: str = typer.Option(None, "--birth", "-b", help="Birth date, free text"),
):
    """Add a spouse of PARTNER in the same generation."""
    spouse_gender = _gender(gender)

    async def action(session: GenealogySession):
        partner_member = _resolve(session, partner)
        member = _check(
            session,
            await session.add_spouse(partner_member.id, name, spouse_gender, birth=birth),
        )
        _added(member, "spouse")

    _with_session(action)


@app.command()
def edit(
    member: str = typer.Argument(..., help="Member id or name"),
    name: str = typer.Option(None, "--name", "-n", help="New name"),
    gender: str = typer.Option(None, "--gender", "-g", help="male or female"),
    birth: str = typer.Option(None, "--birth", "-b", help="Birth date, free text"),
    avatar: str = typer.Option(None, "--avatar", help="Avatar URL"),
    generation: int = typer.Option(None, "--generation", help="Generation number"),
):
    """Edit a member's fields."""
    changes = {
        "name": name,
        "gender": _gender(gender),
        "birth": birth,
        "avatar": avatar,
        "generation": generation,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        console.print("[yellow]Nothing to change[/yellow]")
        raise typer.Exit(1)

    async def action(session: GenealogySession):
        target = _resolve(session, member)
        updated = _check(session, await session.edit_member(target.id, **changes))
        console.print(f"[green]Updated {updated.name} ({updated.id})[/green]")

    _with_session(action)


@app.command()
def delete(
    member: str = typer.Argument(..., help="Member id or name"),
):
    """Delete a member."""

    async def action(session: GenealogySession):
        target = _resolve(session, member)
        _check(session, await session.delete_member(target.id))
        console.print(f"[green]Deleted {target.name} ({target.id})[/green]")

    _with_session(action)


@app.command("add-event")
def add_event(
    content: str = typer.Argument(..., help="What happened"),
    date: str = typer.Option(None, "--date", "-d", help="ISO date (default: today)"),
    members: list[str] = typer.Option(None, "--member", "-m", help="Related member id or name (repeatable)"),
):
    """Record a dated event."""
    try:
        when = dt.date.fromisoformat(date) if date else dt.date.today()
    except ValueError:
        raise typer.BadParameter(f"Invalid date {date!r}; use YYYY-MM-DD", param_hint="--date")

    async def action(session: GenealogySession):
        related = [_resolve(session, ref).id for ref in (members or [])]
        event = _check(session, await session.add_event(content, when, related))
        console.print(f"[green]Added event {event.id} on {event.date.isoformat()}[/green]")

    _with_session(action)


@app.command("delete-event")
def delete_event(
    event_id: str = typer.Argument(..., help="Event id"),
):
    """Delete an event."""

    async def action(session: GenealogySession):
        _check(session, await session.delete_event(event_id))
        console.print(f"[green]Deleted event {event_id}[/green]")

    _with_session(action)


@app.command()
def whoami(
    member: str = typer.Argument(None, help="Member id or name to identify as"),
    clear: bool = typer.Option(False, "--clear", help="Forget the self identification"),
):
    """Show or set which member you are."""

    async def action(session: GenealogySession):
        if clear:
            session.set_self(None)
            console.print("[green]Self identification cleared[/green]")
            return
        if member:
            target = _resolve(session, member)
            _check(session, session.set_self(target.id))
        me = session.me
        if me is None:
            console.print("[yellow]Not identified. Run: genealogy whoami <member>[/yellow]")
            return
        console.print(f"You are [bold]{me.name}[/bold] ({me.id}), generation {me.generation}")

    _with_session(action)


@app.command()
def tree():
    """Show the laid-out tree, tier by tier."""

    async def action(session: GenealogySession):
        nodes = session.nodes
        if not nodes:
            console.print("[yellow]The tree is empty. Start with: genealogy add-root <name>[/yellow]")
            return

        table = Table(title=f"Family tree ({session.scope})")
        table.add_column("Gen", justify="right")
        table.add_column("Name")
        table.add_column("Gender")
        table.add_column("X", justify="right")
        table.add_column("Y", justify="right")
        table.add_column("Relation")
        table.add_column("ID", style="dim")

        for node in sorted(nodes.values(), key=lambda n: (n.y, n.x)):
            table.add_row(
                str(node.generation),
                node.name,
                node.member.gender.value,
                f"{node.x:g}",
                f"{node.y:g}",
                session.kinship(node.id) or "",
                node.id,
            )

        console.print(table)

    _with_session(action)


@app.command()
def kinship(
    target: str = typer.Argument(..., help="Member id or name"),
    me: str = typer.Option(None, "--me", help="Reference member (default: your self id)"),
):
    """Show how TARGET is related to you."""

    async def action(session: GenealogySession):
        target_member = _resolve(session, target)
        me_id = _resolve(session, me).id if me else session.self_id
        if session.store.get_member(me_id) is None:
            _fail("No self identification. Run: genealogy whoami <member>, or pass --me")
        term = resolve_kinship(session.nodes, me_id, target_member.id)
        console.print(Panel(f"[bold]{target_member.name}[/bold] is your [cyan]{term}[/cyan]", title="Kinship"))

    _with_session(action)


@app.command()
def timeline(
    member: str = typer.Option(None, "--member", "-m", help="Only events linked to this member"),
    query: str = typer.Option(None, "--search", "-s", help="Only events containing this text"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum results"),
):
    """List events, newest first."""

    async def action(session: GenealogySession):
        events = list(session.events)
        if member:
            linked = {e.id for e in session.events_for(_resolve(session, member).id)}
            events = [e for e in events if e.id in linked]
        if query:
            matched = {e.id for e in session.search_events(query)}
            events = [e for e in events if e.id in matched]

        if not events:
            console.print("[yellow]No events found[/yellow]")
            return

        names = {m.id: m.name for m in session.members}
        table = Table(title="Timeline")
        table.add_column("Date")
        table.add_column("Event")
        table.add_column("Members")
        table.add_column("ID", style="dim")
        for event in events[:limit]:
            table.add_row(
                event.date.isoformat(),
                event.content,
                ", ".join(names.get(i, i) for i in event.related_member_ids),
                event.id,
            )
        console.print(table)
        console.print(f"[dim]Showing {min(limit, len(events))} of {len(events)} events[/dim]")

    _with_session(action)


@app.command()
def members(
    query: str = typer.Argument(None, help="Name search term"),
):
    """List or search members."""

    async def action(session: GenealogySession):
        found = session.search_members(query) if query else list(session.members)
        if not found:
            console.print(f"[yellow]No members found matching '{query}'[/yellow]" if query else "[yellow]No members[/yellow]")
            return

        table = Table(title="Members")
        table.add_column("Name")
        table.add_column("Gen", justify="right")
        table.add_column("Birth")
        table.add_column("ID", style="dim")
        for m in found:
            table.add_row(m.name, str(m.generation), m.birth or "", m.id)
        console.print(table)

    _with_session(action)


@app.command()
def export(
    out_file: Path = typer.Argument(..., help="Output file (.json, .mmd or .mermaid)"),
):
    """Export the laid-out tree."""
    from .export import export_by_format

    async def action(session: GenealogySession):
        try:
            path = export_by_format(session.nodes, out_file, events=session.events, scope=session.scope)
        except ValueError as e:
            _fail(str(e))
        console.print(f"[green]Exported {len(session.nodes)} members to {path}[/green]")

    _with_session(action)


if __name__ == "__main__":
    app()
