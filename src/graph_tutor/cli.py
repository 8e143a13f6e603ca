"""Command-line interface for graph-tutor.

    graph-tutor init
    graph-tutor concept add "Gradient Descent" --kind Method
    graph-tutor lens concept_01H... --radius 2
    graph-tutor changeset stage proposal.json
    graph-tutor changeset accept ITEM_ID...
    graph-tutor changeset apply CHANGESET_ID
    graph-tutor merge preview CANONICAL_ID DUPLICATE_ID...
"""

import functools
import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import configure_logging, load_settings, reset_logging
from .constants import (
    CONCEPT_KINDS,
    CONTEXT_PACK_RADII,
    DEFAULT_CONCEPT_KIND,
    EDGE_TYPES,
    LENS_DEFAULT_RADIUS,
)
from .engine import TutorEngine
from .errors import GraphTutorError
from .timeutil import format_relative_time, parse_time_reference

console = Console()


def get_engine(ctx: click.Context) -> TutorEngine:
    """Open the engine once per invocation; closed when the command finishes."""
    root = ctx.find_root()
    if "engine" not in root.obj:
        engine = TutorEngine.from_settings(root.obj["settings"])
        root.obj["engine"] = engine
        root.call_on_close(engine.close)
    return root.obj["engine"]


def handle_errors(f):
    """Print domain errors in red and exit with status 1."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except GraphTutorError as e:
            console.print(f"[red]Error:[/red] {escape(e.message)}", highlight=False)
            raise SystemExit(1)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
            raise SystemExit(1)

    return wrapper


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    "--home",
    envvar="GRAPH_TUTOR_HOME",
    type=click.Path(path_type=Path),
    help="Data directory (default ~/.graph-tutor)",
)
@click.option(
    "--vault",
    envvar="GRAPH_TUTOR_VAULT_DIR",
    type=click.Path(path_type=Path),
    help="Vault directory that file patches apply to",
)
@click.option("--log-level", envvar="GRAPH_TUTOR_LOG_LEVEL", help="Logging level")
@click.pass_context
def cli(ctx, home, vault, log_level):
    """graph-tutor - knowledge-graph tutor with reviewable changesets."""
    ctx.ensure_object(dict)
    try:
        settings = load_settings(home_dir=home, vault_dir=vault, log_level=log_level)
    except GraphTutorError as e:
        raise click.UsageError(e.message)
    ctx.obj["settings"] = settings
    configure_logging(settings)
    ctx.call_on_close(reset_logging)


@cli.command()
@click.pass_context
@handle_errors
def init(ctx):
    """Create the data directory, database and vault."""
    settings = ctx.obj["settings"]
    settings.vault_path.mkdir(parents=True, exist_ok=True)
    get_engine(ctx)
    console.print(f"[green]✓[/green] Initialized graph-tutor at {settings.home_dir}")
    console.print(f"  Vault: {settings.vault_path}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def status(ctx, as_json):
    """Show graph and review queue statistics."""
    stats = get_engine(ctx).get_stats()
    if as_json:
        _echo_json(stats)
        return

    table = Table(title="graph-tutor")
    table.add_column("Collection")
    table.add_column("Count", justify="right")
    for key, value in stats.items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


# --- Concepts and edges ---


@cli.group()
def concept():
    """Create and inspect concepts."""


@concept.command("add")
@click.argument("title")
@click.option("--id", "concept_id", help="Explicit concept id")
@click.option("--kind", type=click.Choice(CONCEPT_KINDS), default=DEFAULT_CONCEPT_KIND)
@click.option("--module", help="Grouping key")
@click.option("--l0", help="One-sentence summary")
@click.pass_context
@handle_errors
def concept_add(ctx, title, concept_id, kind, module, l0):
    """Create a concept directly (no review)."""
    engine = get_engine(ctx)
    fields = {"kind": kind, "module": module, "l0": l0}
    if concept_id:
        fields["id"] = concept_id
    duplicates = engine.find_duplicates(title, module=module, kind=kind)
    created = engine.create_concept(title, **fields)
    console.print(f"[green]+[/green] {created.id} \"{escape(created.title)}\" ({created.kind})")
    for dup in duplicates:
        console.print(
            f"  [yellow]possible duplicate[/yellow] {dup.id} \"{escape(dup.title)}\" "
            f"score={dup.score:.2f} ({dup.reason})"
        )


@concept.command("show")
@click.argument("concept_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def concept_show(ctx, concept_id, as_json):
    """Show a concept (merged ids resolve to the canonical concept)."""
    engine = get_engine(ctx)
    found = engine.get_concept(concept_id)
    if as_json:
        _echo_json(found.model_dump(mode="json"))
        return
    console.print(f"[bold]{escape(found.title)}[/bold] [dim]{found.id}[/dim]")
    if found.id != concept_id:
        console.print(f"  [yellow]{concept_id} is merged into {found.id}[/yellow]")
    console.print(f"  Kind: {found.kind}" + (f" | Module: {found.module}" if found.module else ""))
    if found.l0:
        console.print(f"  {escape(found.l0)}")
    for bullet in found.l1:
        console.print(f"  - {escape(bullet)}")


@concept.command("list")
@click.pass_context
@handle_errors
def concept_list(ctx):
    """List canonical concepts."""
    summaries = get_engine(ctx).store.concepts.list_summaries()
    table = Table(title=f"Concepts ({len(summaries)})")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Kind")
    table.add_column("Module")
    for s in summaries:
        table.add_row(s.id, escape(s.title), s.kind, s.module or "")
    console.print(table)


@cli.group()
def edge():
    """Create edges."""


@edge.command("add")
@click.argument("from_id")
@click.argument("to_id")
@click.argument("edge_type", type=click.Choice(EDGE_TYPES))
@click.pass_context
@handle_errors
def edge_add(ctx, from_id, to_id, edge_type):
    """Create an edge directly; prerequisite cycles are refused."""
    try:
        created = get_engine(ctx).create_edge(from_id, to_id, edge_type)
    except GraphTutorError as e:
        cycle = e.details.get("cycle_node_ids")
        if cycle:
            console.print(f"[red]Error:[/red] {escape(e.message)}")
            console.print(f"  Cycle: {' -> '.join(cycle)}")
            raise SystemExit(1)
        raise
    console.print(f"[green]+[/green] {created.id} {from_id} -[{edge_type}]-> {to_id}", markup=False)


# --- Read-only views ---


@cli.command()
@click.argument("concept_id")
@click.option("--radius", default=LENS_DEFAULT_RADIUS, show_default=True, type=int, help="Hops on each side")
@click.option("--edge-type", "edge_types", multiple=True, help="Secondary edge types to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def lens(ctx, concept_id, radius, edge_types, as_json):
    """Show the prerequisite/dependent neighborhood of a concept."""
    engine = get_engine(ctx)
    result = engine.lens(concept_id, radius=radius, edge_type_filter=list(edge_types))
    if as_json:
        _echo_json(result.to_dict())
        return

    titles = {s.id: s.title for s in engine.store.concepts.list_summaries_by_ids(result.node_ids)}
    table = Table(title=f"Lens (radius {radius})")
    table.add_column("Side")
    table.add_column("Depth", justify="right")
    table.add_column("Rank", justify="right")
    table.add_column("Concept")
    for meta in result.metadata:
        table.add_row(meta.side, str(meta.depth), str(meta.rank), escape(titles.get(meta.id, meta.id)))
    console.print(table)
    console.print(f"[dim]{len(result.edge_ids)} edges[/dim]")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@cli.command()
@click.argument("concept_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def path(ctx, concept_id, as_json):
    """Print the study order of a concept's prerequisites."""
    engine = get_engine(ctx)
    result = engine.prerequisite_path(concept_id)
    if as_json:
        if result.ok:
            _echo_json({"ok": True, "ordered_concept_ids": result.ordered_concept_ids})
        else:
            _echo_json({"ok": False, "cycle_node_ids": result.cycle_node_ids})
        return

    ids = result.ordered_concept_ids if result.ok else result.cycle_node_ids
    titles = {s.id: s.title for s in engine.store.concepts.list_summaries_by_ids(ids)}
    if not result.ok:
        console.print("[red]Prerequisite cycle:[/red]")
        for concept_id in ids:
            console.print(f"  {escape(titles.get(concept_id, concept_id))}")
        raise SystemExit(1)
    for step, concept_id in enumerate(ids, start=1):
        console.print(f"{step:>3}. {escape(titles.get(concept_id, concept_id))} [dim]{concept_id}[/dim]")


@cli.command("context-pack")
@click.argument("concept_id")
@click.option("--radius", type=click.Choice(CONTEXT_PACK_RADII), default="1-hop", show_default=True)
@click.option("--include-quiz", is_flag=True, help="Include quiz review items")
@click.option("--out", "out_dir", type=click.Path(path_type=Path), help="Write the pack into this directory")
@click.pass_context
@handle_errors
def context_pack(ctx, concept_id, radius, include_quiz, out_dir):
    """Render a markdown study pack for a concept."""
    pack = get_engine(ctx).context_pack(concept_id, radius=radius, include_quiz=include_quiz)
    if out_dir is None:
        click.echo(pack.markdown)
        return
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / pack.file_name
    target.write_text(pack.markdown)
    console.print(f"[green]✓[/green] Wrote {len(pack.concept_ids)} concepts to {target}")


# --- Changesets ---


@cli.group()
def changeset():
    """Stage, review and apply changesets."""


@changeset.command("list")
@click.option("--status", type=click.Choice(["draft", "applied", "rejected"]))
@click.pass_context
@handle_errors
def changeset_list(ctx, status):
    """List changesets, newest first."""
    changesets = get_engine(ctx).list_changesets(status)
    if not changesets:
        console.print("[dim]No changesets[/dim]")
        return
    table = Table(title="Changesets")
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Created")
    for cs in changesets:
        table.add_row(cs.id, cs.status, cs.source_id or "", format_relative_time(cs.created_at))
    console.print(table)


def _describe_item(item) -> str:
    payload = item.payload
    if payload.entity_type == "concept":
        return f"concept {payload.id} \"{payload.title}\""
    if payload.entity_type == "edge":
        return f"edge {payload.from_concept_id} -[{payload.type}]-> {payload.to_concept_id}"
    return f"file {payload.file_path}"


@changeset.command("show")
@click.argument("changeset_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def changeset_show(ctx, changeset_id, as_json):
    """Show a changeset and its items."""
    cs, items = get_engine(ctx).get_changeset(changeset_id)
    if as_json:
        _echo_json({
            "changeset": cs.model_dump(mode="json"),
            "items": [item.model_dump(mode="json") for item in items],
        })
        return

    console.print(f"[bold]{cs.id}[/bold] ({cs.status})")
    styles = {"pending": "yellow", "accepted": "green", "rejected": "red", "applied": "blue"}
    for item in items:
        style = styles[item.status]
        console.print(f"  [{style}]{item.status:<8}[/{style}] {item.id}")
        console.print(f"           {_describe_item(item)}", markup=False)


@changeset.command("stage")
@click.argument("proposal_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
@handle_errors
def changeset_stage(ctx, proposal_file):
    """Stage a JSON proposal file as a draft changeset."""
    try:
        proposal = json.loads(proposal_file.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="PROPOSAL_FILE")
    cs, items = get_engine(ctx).stage_changeset(proposal)
    console.print(f"[green]✓[/green] Staged {cs.id} with {len(items)} items")
    for item in items:
        console.print(f"  {item.id}")


def _status_command(name: str, method: str, verb: str):
    @changeset.command(name)
    @click.argument("item_ids", nargs=-1, required=True)
    @click.pass_context
    @handle_errors
    def command(ctx, item_ids):
        items = getattr(get_engine(ctx), method)(list(item_ids))
        console.print(f"[green]✓[/green] {verb} {len(items)} item(s)")

    command.__doc__ = f"Mark changeset items as {verb.lower()}."
    return command


changeset_accept = _status_command("accept", "accept_items", "Accepted")
changeset_reject = _status_command("reject", "reject_items", "Rejected")
changeset_reset = _status_command("reset", "reset_items", "Reset")


@changeset.command("discard")
@click.argument("changeset_id")
@click.pass_context
@handle_errors
def changeset_discard(ctx, changeset_id):
    """Reject all open items and close the changeset."""
    cs = get_engine(ctx).discard_changeset(changeset_id)
    console.print(f"[yellow]✗[/yellow] Discarded {cs.id}")


@changeset.command("apply")
@click.argument("changeset_id")
@click.pass_context
@handle_errors
def changeset_apply(ctx, changeset_id):
    """Apply the accepted items of a changeset."""
    result = get_engine(ctx).apply_changeset(changeset_id)
    if result.already_applied:
        console.print(f"[dim]{changeset_id} was already applied[/dim]")
        return
    if not result.applied_item_ids:
        console.print("[dim]Nothing accepted; nothing applied[/dim]")
        return
    console.print(f"[green]✓[/green] Applied {len(result.applied_item_ids)} item(s) from {changeset_id}")
    console.print(
        f"  {len(result.created_concept_ids)} concepts, {len(result.created_edge_ids)} edges, "
        f"{len(result.vault_file_updates)} files"
    )


# --- Merges ---


@cli.group()
def merge():
    """Merge duplicate concepts (reversible)."""


def _print_preview(preview) -> None:
    counts = preview.counts()
    console.print(
        f"Merge {', '.join(preview.duplicate_ids)} into {preview.canonical_id}: "
        f"{counts['edges_rewired']} edges rewired, {counts['edges_deleted']} dropped, "
        f"{counts['review_items_reassigned']} review items, {counts['sources_moved']} sources",
        highlight=False,
    )
    for change in preview.edge_changes:
        before = change.before
        line = f"  {change.action:<7} {before.from_concept_id} -[{before.type}]-> {before.to_concept_id}"
        if change.after is not None:
            line += f"  =>  {change.after.from_concept_id} -> {change.after.to_concept_id}"
        else:
            line += f"  ({change.reason})"
        console.print(line, markup=False, highlight=False)


@merge.command("preview")
@click.argument("canonical_id")
@click.argument("duplicate_ids", nargs=-1, required=True)
@click.pass_context
@handle_errors
def merge_preview(ctx, canonical_id, duplicate_ids):
    """Show what a merge would change without changing anything."""
    _print_preview(get_engine(ctx).preview_merge(canonical_id, list(duplicate_ids)))


@merge.command("apply")
@click.argument("canonical_id")
@click.argument("duplicate_ids", nargs=-1, required=True)
@click.pass_context
@handle_errors
def merge_apply(ctx, canonical_id, duplicate_ids):
    """Merge duplicates into the canonical concept."""
    record, preview = get_engine(ctx).merge_concepts(canonical_id, list(duplicate_ids))
    _print_preview(preview)
    console.print(f"[green]✓[/green] Merged as {record.id}")


@merge.command("undo")
@click.argument("merge_id")
@click.pass_context
@handle_errors
def merge_undo(ctx, merge_id):
    """Undo a merge, restoring the duplicates."""
    record = get_engine(ctx).undo_merge(merge_id)
    console.print(f"[green]✓[/green] Undid {record.id}; restored {', '.join(record.duplicate_ids)}")


@merge.command("list")
@click.option("--active", is_flag=True, help="Only merges that have not been undone")
@click.pass_context
@handle_errors
def merge_list(ctx, active):
    """List merges."""
    for record in get_engine(ctx).list_merges(active_only=active):
        state = "undone" if record.undone_at else "active"
        console.print(
            f"{record.id} {state} {record.canonical_id} <= {', '.join(record.duplicate_ids)}",
            markup=False,
        )


# --- Audit log ---


@cli.command()
@click.option("--since", help="Only events since (ISO, '3 days ago', 'yesterday')")
@click.option("--op", "ops", multiple=True, help="Filter by operation")
@click.option("--entity", help="Only events mentioning this id")
@click.option("-n", "--limit", default=50, show_default=True, help="Most recent N events")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def log(ctx, since, ops, entity, limit, as_json):
    """Show the audit log of graph mutations."""
    engine = get_engine(ctx)
    if entity:
        events = engine.history(entity)
    elif since:
        events = engine.store.events.read_since(parse_time_reference(since))
    else:
        events = engine.store.events.read_all()

    if since and entity:
        cutoff = parse_time_reference(since)
        events = [e for e in events if e.ts >= cutoff]
    if ops:
        events = [e for e in events if e.op in ops]
    events = events[-limit:] if limit else events

    if as_json:
        _echo_json([e.model_dump(mode="json") for e in events])
        return
    if not events:
        console.print("[dim]No events[/dim]")
        return
    for event in events:
        console.print(
            f"[dim]{event.ts.strftime('%Y-%m-%d %H:%M:%S')}[/dim] [cyan]{event.op}[/cyan] "
            f"{event.actor} {json.dumps(event.data, default=str)}",
            highlight=False,
        )


if __name__ == "__main__":
    cli()
